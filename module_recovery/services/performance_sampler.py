"""性能采样模块

每次检查后记录各模块探测命令的耗时和系统资源使用情况（CPU、内存、磁盘、负载），
保存在固定长度的环形缓冲中。指标超过阈值时通过回调发出通知，同一指标持续超限时只通知一次。
"""

import asyncio
import json
import os
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Callable, Awaitable, Iterable, Set, Tuple

import psutil

from ..models.health import ModuleHealthRecord
from ..utils.fileio import write_json_atomic
from ..utils.log_manager import get_logger
from ..utils.timestamps import utc_now, format_timestamp

DEFAULT_THRESHOLDS: Dict[str, Optional[float]] = {
    'duration_threshold': 300,
    'memory_threshold': 80,
    'disk_threshold': 80,
    'cpu_threshold': None
}

SYSTEM_COMPONENT = 'system'
PERCENT_METRICS = ('cpu', 'memory', 'disk')


@dataclass
class SystemMetrics:
    """系统资源指标"""
    timestamp: datetime
    cpu_percent: float
    memory_percent: float
    memory_used_mb: float
    memory_available_mb: float
    disk_percent: float
    load_average: float

    def to_dict(self) -> Dict[str, Any]:
        data = {key: round(value, 2) if isinstance(value, float) else value
                for key, value in asdict(self).items()}
        data['timestamp'] = format_timestamp(self.timestamp)
        return data


@dataclass
class ModuleTiming:
    """单个模块一次检查的耗时（秒），probe 为整个评分过程的耗时"""
    module_id: str
    timestamp: datetime
    probe: float
    timings: Dict[str, float] = field(default_factory=dict)

    def durations(self) -> List[Tuple[str, float]]:
        return [('probe', self.probe)] + sorted(self.timings.items())

    def to_dict(self) -> Dict[str, Any]:
        data = {name: round(value, 3) for name, value in self.durations()}
        data['timestamp'] = format_timestamp(self.timestamp)
        return data


@dataclass
class ThresholdBreach:
    """超过阈值的性能指标"""
    component: str
    metric: str
    value: float
    threshold: float

    @property
    def key(self) -> Tuple[str, str]:
        return self.component, self.metric

    @property
    def message(self) -> str:
        unit = '%' if self.metric in PERCENT_METRICS else 's'
        return (f"Performance alert: {self.component} {self.metric} = "
                f"{self.value:.1f}{unit} (threshold: {self.threshold:g}{unit})")


def _existing_path(path: str) -> str:
    path = os.path.abspath(path)
    while not os.path.exists(path) and os.path.dirname(path) != path:
        path = os.path.dirname(path)
    return path


class PerformanceSampler:
    """性能采样器

    采样在每次检查之后进行，不单独运行循环。系统指标用 psutil 采集，
    模块耗时取自健康记录中的探测耗时。
    """

    def __init__(self, workspace_root: str = '.', history_size: int = 100,
                 thresholds: Optional[Dict[str, Optional[float]]] = None,
                 metrics_file: Optional[str] = None):
        """初始化性能采样器

        Args:
            workspace_root: 工作区根目录，用于统计磁盘使用率
            history_size: 每个环形缓冲保存的采样数量
            thresholds: 告警阈值，值为 None 的项不检查
            metrics_file: 性能报告文件路径，供其他进程的 status 命令读取
        """
        self.workspace_root = workspace_root
        self.history_size = history_size
        self.thresholds: Dict[str, Optional[float]] = dict(DEFAULT_THRESHOLDS)
        self.thresholds.update(thresholds or {})
        self.metrics_file = metrics_file

        self.system_history: deque = deque(maxlen=history_size)
        self.module_history: Dict[str, deque] = {}
        self.logger = get_logger(__name__)

        # 阈值超限回调，参数为超限的指标
        self.on_threshold_exceeded: Optional[Callable[[ThresholdBreach], Awaitable[None]]] = None
        self._breached: Set[Tuple[str, str]] = set()

    @classmethod
    def from_config(cls, config: Dict[str, Any], workspace_root: str = '.',
                    metrics_file: Optional[str] = None) -> Optional['PerformanceSampler']:
        """根据 performance 配置段创建采样器，未启用时返回 None"""
        if not config.get('enabled', True):
            return None
        thresholds = {key: config[key] for key in DEFAULT_THRESHOLDS if key in config}
        return cls(workspace_root, config.get('history_size', 100), thresholds, metrics_file)

    @property
    def has_samples(self) -> bool:
        return bool(self.system_history or self.module_history)

    def set_threshold_callback(self,
                               callback: Callable[[ThresholdBreach], Awaitable[None]]) -> None:
        """设置阈值超限回调函数

        Args:
            callback: 异步回调函数，参数为超限的指标
        """
        self.on_threshold_exceeded = callback

    def update_thresholds(self, thresholds: Dict[str, Optional[float]]) -> None:
        """更新告警阈值"""
        updated = dict(self.thresholds)
        updated.update({key: value for key, value in thresholds.items()
                        if key in DEFAULT_THRESHOLDS})
        if updated != self.thresholds:
            self.thresholds = updated
            self.logger.info(f"更新性能告警阈值: {self.thresholds}")

    def collect_system_metrics(self) -> SystemMetrics:
        """采集当前的系统资源指标

        CPU 使用率是与上一次调用之间的平均值，第一次调用时为 0。
        """
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage(_existing_path(self.workspace_root))
        return SystemMetrics(
            timestamp=utc_now(),
            cpu_percent=psutil.cpu_percent(interval=None),
            memory_percent=memory.percent,
            memory_used_mb=memory.used / 1024 / 1024,
            memory_available_mb=memory.available / 1024 / 1024,
            disk_percent=disk.percent,
            load_average=psutil.getloadavg()[0]
        )

    async def sample(self, records: Iterable[ModuleHealthRecord]) -> List[ThresholdBreach]:
        """
        记录一次检查的模块耗时和系统指标，并检查阈值

        Args:
            records: 本次检查的模块健康记录

        Returns:
            List[ThresholdBreach]: 本次新出现的超限指标
        """
        observed: List[ThresholdBreach] = []
        for record in records:
            timing = ModuleTiming(record.module_id, record.timestamp, record.duration,
                                  dict(record.timings))
            ring = self.module_history.setdefault(record.module_id,
                                                  deque(maxlen=self.history_size))
            ring.append(timing)
            observed.extend(self._module_breaches(timing))

        try:
            metrics = await asyncio.get_running_loop().run_in_executor(
                None, self.collect_system_metrics)
        except (psutil.Error, OSError) as e:
            self.logger.warning(f"采集系统指标失败: {e}")
        else:
            self.system_history.append(metrics)
            observed.extend(self._system_breaches(metrics))
            self.logger.debug(
                f"性能指标 - CPU: {metrics.cpu_percent:.1f}%, "
                f"内存: {metrics.memory_percent:.1f}%, "
                f"磁盘: {metrics.disk_percent:.1f}%, "
                f"负载: {metrics.load_average:.2f}"
            )

        breaches = self._new_breaches(observed)
        for breach in breaches:
            self.logger.warning(f"性能指标超过阈值: {breach.message}")
            if self.on_threshold_exceeded:
                await self.on_threshold_exceeded(breach)
        return breaches

    def _module_breaches(self, timing: ModuleTiming) -> List[ThresholdBreach]:
        threshold = self.thresholds.get('duration_threshold')
        if threshold is None:
            return []
        return [ThresholdBreach(timing.module_id, name, value, threshold)
                for name, value in timing.durations() if value > threshold]

    def _system_breaches(self, metrics: SystemMetrics) -> List[ThresholdBreach]:
        breaches = []
        for metric in PERCENT_METRICS:
            threshold = self.thresholds.get(f'{metric}_threshold')
            value = getattr(metrics, f'{metric}_percent')
            if threshold is not None and value > threshold:
                breaches.append(ThresholdBreach(SYSTEM_COMPONENT, metric, value, threshold))
        return breaches

    def _new_breaches(self, observed: List[ThresholdBreach]) -> List[ThresholdBreach]:
        current = {breach.key for breach in observed}
        for component, metric in sorted(self._breached - current):
            self.logger.info(f"性能指标恢复正常: {component} {metric}")
        new = [breach for breach in observed if breach.key not in self._breached]
        self._breached = current
        return new

    def get_metrics_history(self, minutes: Optional[int] = None) -> List[SystemMetrics]:
        """获取指定时间范围内的系统指标，minutes 为空时返回全部"""
        if minutes is None:
            return list(self.system_history)
        cutoff_time = utc_now() - timedelta(minutes=minutes)
        return [metrics for metrics in self.system_history if metrics.timestamp >= cutoff_time]

    def get_average_metrics(self, minutes: Optional[int] = None) -> Optional[Dict[str, float]]:
        history = self.get_metrics_history(minutes)
        if not history:
            return None
        count = len(history)
        return {
            'avg_cpu_percent': round(sum(m.cpu_percent for m in history) / count, 2),
            'avg_memory_percent': round(sum(m.memory_percent for m in history) / count, 2),
            'avg_disk_percent': round(sum(m.disk_percent for m in history) / count, 2),
            'avg_load_average': round(sum(m.load_average for m in history) / count, 2),
            'sample_count': count
        }

    def get_peak_metrics(self, minutes: Optional[int] = None) -> Optional[Dict[str, float]]:
        history = self.get_metrics_history(minutes)
        if not history:
            return None
        return {
            'peak_cpu_percent': max(m.cpu_percent for m in history),
            'peak_memory_percent': max(m.memory_percent for m in history),
            'peak_disk_percent': max(m.disk_percent for m in history),
            'peak_load_average': max(m.load_average for m in history)
        }

    def report(self) -> Dict[str, Any]:
        """
        生成性能报告

        Returns:
            Dict[str, Any]: 最近的系统指标、平均值和峰值、各模块最近一次与平均的耗时
        """
        modules = {}
        for module_id, ring in self.module_history.items():
            probes = [timing.probe for timing in ring]
            modules[module_id] = {
                'latest': ring[-1].to_dict(),
                'avg_probe': round(sum(probes) / len(probes), 3),
                'max_probe': round(max(probes), 3),
                'samples': len(ring)
            }
        slowest = max(modules, key=lambda m: modules[m]['latest']['probe'], default=None)

        return {
            'generated_at': format_timestamp(utc_now()),
            'system': self.system_history[-1].to_dict() if self.system_history else None,
            'average': self.get_average_metrics(),
            'peak': self.get_peak_metrics(),
            'modules': modules,
            'slowest_module': slowest,
            'active_breaches': [f"{component}:{metric}"
                                for component, metric in sorted(self._breached)],
            'thresholds': dict(self.thresholds)
        }

    def save(self) -> None:
        """把性能报告写入报告文件"""
        if self.metrics_file:
            write_json_atomic(self.metrics_file, self.report())

    def saved_report(self) -> Optional[Dict[str, Any]]:
        """读取报告文件中最近一次保存的性能报告"""
        if not self.metrics_file:
            return None
        try:
            with open(self.metrics_file, 'r', encoding='utf-8') as file:
                return json.load(file)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self.logger.warning(f"性能报告文件无效: {self.metrics_file} ({e})")
            return None
