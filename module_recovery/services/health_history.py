"""模块健康历史

每个模块保留最近若干次评分，用于趋势判断、告警级别比较和工作区报告。
"""

import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Deque, List, Optional, Any, Iterable

from ..models.health import (
    ModuleHealthRecord, ModuleStatus, SystemHealthSnapshot, status_for_score
)
from ..utils.fileio import write_json_atomic
from ..utils.log_manager import get_logger
from ..utils.timestamps import format_timestamp, parse_timestamp

DEFAULT_MAX_SAMPLES = 10
# 趋势判断的分数容差
TREND_TOLERANCE = 5


@dataclass(frozen=True)
class HistorySample:
    """一次评分采样"""
    timestamp: datetime
    score: int
    status: ModuleStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': format_timestamp(self.timestamp),
            'score': self.score,
            'status': self.status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistorySample':
        score = int(data['score'])
        status = data.get('status')
        return cls(
            timestamp=parse_timestamp(data['timestamp']),
            score=score,
            status=ModuleStatus(status) if status else status_for_score(score)
        )


class HealthHistory:
    """模块健康历史环形缓冲，只追加且有界"""

    def __init__(self, history_file: Optional[str] = None,
                 max_samples: int = DEFAULT_MAX_SAMPLES):
        self.history_file = history_file
        self.max_samples = max_samples
        self._samples: Dict[str, Deque[HistorySample]] = {}
        self.logger = get_logger(__name__)

    def record(self, records: Iterable[ModuleHealthRecord]) -> None:
        """追加一次检查的结果"""
        for record in records:
            ring = self._samples.setdefault(record.module_id, deque(maxlen=self.max_samples))
            ring.append(HistorySample(record.timestamp, record.score, record.status))

    def samples(self, module_id: str) -> List[HistorySample]:
        return list(self._samples.get(module_id, ()))

    def latest(self, module_id: str) -> Optional[HistorySample]:
        ring = self._samples.get(module_id)
        return ring[-1] if ring else None

    def modules(self) -> List[str]:
        return list(self._samples.keys())

    def trend(self, module_id: str) -> str:
        """
        最新评分相对此前平均分的变化趋势

        Returns:
            str: improving / declining / stable，样本不足两次时为 unknown
        """
        samples = self.samples(module_id)
        if len(samples) < 2:
            return 'unknown'
        previous = samples[:-1]
        baseline = sum(sample.score for sample in previous) / len(previous)
        delta = samples[-1].score - baseline
        if delta >= TREND_TOLERANCE:
            return 'improving'
        if delta <= -TREND_TOLERANCE:
            return 'declining'
        return 'stable'

    def report(self, module_ids: List[str]) -> Dict[str, Any]:
        """
        根据每个模块的最新采样生成工作区健康报告

        没有采样的模块按离线且评分0计入。

        Args:
            module_ids: 需要报告的模块

        Returns:
            Dict[str, Any]: 工作区报告
        """
        details = []
        records = []
        for module_id in module_ids:
            latest = self.latest(module_id)
            if latest is None:
                details.append({'module': module_id, 'score': 0, 'status': 'unknown',
                                'trend': 'unknown'})
                records.append(ModuleHealthRecord(module_id, 0, ModuleStatus.OFFLINE))
                continue
            details.append({
                'module': module_id,
                'score': latest.score,
                'status': latest.status.value,
                'trend': self.trend(module_id),
                'timestamp': format_timestamp(latest.timestamp)
            })
            records.append(ModuleHealthRecord(module_id, latest.score, latest.status,
                                              timestamp=latest.timestamp))

        snapshot = SystemHealthSnapshot.from_records(records)
        return {
            'workspace_health': snapshot.to_dict(),
            'module_details': details
        }

    def clear(self) -> None:
        self._samples.clear()

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {module_id: [sample.to_dict() for sample in ring]
                for module_id, ring in self._samples.items()}

    def load(self) -> None:
        """从文件加载历史，文件缺失或损坏时从空历史开始"""
        if not self.history_file:
            return
        try:
            with open(self.history_file, 'r', encoding='utf-8') as file:
                data = json.load(file)
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            self.logger.warning(f"健康历史文件无法读取，从空历史开始: {e}")
            return

        if not isinstance(data, dict):
            self.logger.warning("健康历史文件格式错误，从空历史开始")
            return

        self._samples.clear()
        for module_id, entries in data.items():
            ring: Deque[HistorySample] = deque(maxlen=self.max_samples)
            for entry in entries if isinstance(entries, list) else []:
                try:
                    ring.append(HistorySample.from_dict(entry))
                except (KeyError, TypeError, ValueError):
                    self.logger.debug(f"忽略无效的历史采样: {module_id} {entry!r}")
            self._samples[module_id] = ring

    def save(self) -> None:
        if self.history_file:
            write_json_atomic(self.history_file, self.to_dict())
