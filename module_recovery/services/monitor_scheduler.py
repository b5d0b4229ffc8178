"""监控调度器模块

按监控间隔周期性执行检查：评分、分级、触发判断、冷却期判断，
满足条件时执行恢复策略，并负责触发器状态的全部修改。
"""

import asyncio
import copy
import os
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Callable

from ..alerts.integrator import AlertIntegrator
from ..alerts.manager import DEFAULT_DELIVER_TIMEOUT
from ..models.health import SystemHealthSnapshot
from ..models.recovery import (
    TickDecision, TickReport, TriggerState, TriggerThresholds
)
from .cooldown_guard import CooldownGuard
from .health_history import HealthHistory
from .health_scorer import HealthScorer
from .performance_sampler import PerformanceSampler
from .pid_file import PidFile
from .recovery_executor import RecoveryStrategyExecutor
from .severity_classifier import SeverityClassifier
from .state_store import TriggerStateStore
from ..utils.exceptions import (
    DaemonAlreadyRunningError, DaemonRunningError, StateCorruptionError
)
from ..utils.log_manager import get_logger
from ..utils.timestamps import utc_now, format_timestamp


class SchedulerState(Enum):
    """调度器运行状态"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class MonitorScheduler:
    """监控调度器

    触发器状态的唯一修改者。每次检查都完整执行（包括恢复策略）后才等待下一个间隔，
    检查之间不会重叠。
    """

    def __init__(self, scorer: HealthScorer, modules: List[str],
                 store: TriggerStateStore,
                 executor: RecoveryStrategyExecutor,
                 integrator: AlertIntegrator,
                 thresholds: Optional[TriggerThresholds] = None,
                 history: Optional[HealthHistory] = None,
                 pid_file: Optional[PidFile] = None,
                 sampler: Optional[PerformanceSampler] = None,
                 clock: Callable[[], datetime] = utc_now):
        """初始化监控调度器

        Args:
            scorer: 模块健康评分器
            modules: 需要监控的模块列表
            store: 触发器状态存储
            executor: 恢复策略执行器
            integrator: 告警集成器
            thresholds: 触发阈值，默认使用状态存储的默认阈值
            history: 模块健康历史，默认使用告警集成器的历史
            pid_file: PID标记文件
            sampler: 性能采样器，为空时不采样
            clock: 当前时间函数
        """
        self.scorer = scorer
        self.modules = list(modules)
        self.store = store
        self.executor = executor
        self.integrator = integrator
        self.thresholds = copy.deepcopy(thresholds or store.default_thresholds)
        self.classifier = SeverityClassifier(self.thresholds)
        self.history = history or integrator.history
        self.pid_file = pid_file or PidFile(None)
        self.sampler = sampler
        if sampler is not None:
            sampler.set_threshold_callback(integrator.notify_performance)
        self.clock = clock
        self.logger = get_logger(__name__)

        self._state = SchedulerState.STOPPED
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_done: Optional[asyncio.Event] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state != SchedulerState.STOPPED

    def update_thresholds(self, thresholds: TriggerThresholds) -> None:
        """更新触发阈值，下一次检查生效"""
        if thresholds == self.thresholds:
            return
        self.logger.info(f"触发阈值已更新: {self.thresholds.to_dict()} -> "
                         f"{thresholds.to_dict()}")
        self.thresholds = copy.deepcopy(thresholds)
        self.classifier = SeverityClassifier(self.thresholds)
        self.store.default_thresholds = copy.deepcopy(thresholds)

    def on_config_changed(self, old_config: Dict[str, Any],
                          new_config: Dict[str, Any]) -> None:
        """配置文件变更回调，重新加载阈值和告警渠道"""
        self.update_thresholds(TriggerThresholds.from_config(new_config.get('thresholds', {})))
        if self.sampler is not None:
            self.sampler.update_thresholds(new_config.get('performance', {}))
        if old_config.get('alerts') != new_config.get('alerts'):
            self.integrator.dispatcher.load_alerters(new_config.get('alerts', []))
        if old_config.get('workspace', {}).get('modules') != \
                new_config.get('workspace', {}).get('modules'):
            self.logger.warning("模块列表的修改需要重启守护进程才能生效")

    async def start(self) -> None:
        """
        启动监控循环，直到 stop() 或 request_stop() 被调用

        Raises:
            DaemonAlreadyRunningError: 调度器已在运行，或PID文件指向存活的进程
        """
        if self._state != SchedulerState.STOPPED:
            raise DaemonAlreadyRunningError("监控调度器已经在运行", pid=os.getpid())
        self.pid_file.acquire()

        self._state = SchedulerState.STARTING
        self._stop_event = asyncio.Event()
        self._loop_done = asyncio.Event()
        try:
            self.history.load()
            state = self.store.load_or_recover()
            state.is_active = True
            state.monitoring_started = self.clock()
            state.thresholds = copy.deepcopy(self.thresholds)
            await self._persist(self.store.save, state)

            self._state = SchedulerState.RUNNING
            self.logger.info(
                f"启动自动恢复监控，模块数: {len(self.modules)}，"
                f"检查间隔: {self.thresholds.monitoring_interval}秒，"
                f"健康阈值: {self.thresholds.health_threshold}"
            )
            await self._schedule_loop()
        finally:
            await self._shutdown()

    async def _schedule_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"健康检查执行异常: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(),
                                       timeout=self.thresholds.monitoring_interval)
            except asyncio.TimeoutError:
                pass

    async def _shutdown(self) -> None:
        self._state = SchedulerState.STOPPING
        self.logger.info("正在停止自动恢复监控...")
        try:
            await self.integrator.drain(timeout=DEFAULT_DELIVER_TIMEOUT)
            state = self.store.load_or_recover()
            state.is_active = False
            await self._persist(self.store.save, state)
            await self._persist(self.history.save)
        except OSError as e:
            self.logger.error(f"保存停止状态失败: {e}")
        finally:
            self.pid_file.remove()
            self._state = SchedulerState.STOPPED
            self._loop_done.set()
            self.logger.info("自动恢复监控已停止")

    async def _persist(self, save: Callable[..., None], *args: Any) -> None:
        """在线程池中执行保存，写入重试的等待不占用事件循环"""
        await asyncio.get_running_loop().run_in_executor(None, save, *args)

    def request_stop(self) -> None:
        """请求停止，正在执行的检查会先完成，可在信号处理器中调用"""
        if self._stop_event is not None and not self._stop_event.is_set():
            self.logger.info("收到停止请求")
            self._stop_event.set()

    async def stop(self) -> None:
        """停止监控并等待监控循环退出"""
        if self._state == SchedulerState.STOPPED:
            return
        self.request_stop()
        await self._loop_done.wait()

    def _load_state(self, dry_run: bool) -> TriggerState:
        if not dry_run:
            return self.store.load_or_recover()
        try:
            return self.store.load()
        except StateCorruptionError as e:
            self.logger.warning(f"触发器状态损坏，试运行使用默认状态: {e.format_error()}")
            return self.store.default_state()

    async def run_tick(self, dry_run: bool = False) -> TickReport:
        """
        执行一次检查

        试运行时只评分、分级和判断，不修改状态、不执行恢复、不发送通知、不追加历史。

        Args:
            dry_run: 是否试运行

        Returns:
            TickReport: 本次检查的结果
        """
        state = self._load_state(dry_run)
        records = await self.scorer.score_all(self.modules)
        snapshot = SystemHealthSnapshot.from_records(records)

        severity = self.classifier.classify(snapshot, state.consecutive_failures)
        should_trigger = self.classifier.should_trigger(snapshot)
        now = self.clock()
        in_cooldown = CooldownGuard.is_in_cooldown(state, now,
                                                   self.thresholds.cooldown_period)

        report = TickReport(
            records=records,
            snapshot=snapshot,
            severity=severity,
            should_trigger=should_trigger,
            in_cooldown=in_cooldown,
            decision=TickDecision.HEALTHY,
            strategy=SeverityClassifier.strategy_for(severity) if should_trigger else None,
            dry_run=dry_run
        )
        self.logger.info(
            f"健康检查: 平均分 {snapshot.average_score}，严重模块 "
            f"{snapshot.critical_module_count}/{snapshot.total_modules}，"
            f"严重级别 {severity.value}"
        )

        if should_trigger and in_cooldown:
            report.decision = TickDecision.COOLDOWN
        elif should_trigger:
            report.decision = TickDecision.DRY_RUN if dry_run else TickDecision.RECOVER

        if dry_run:
            self.logger.info(f"试运行结果: {report.decision.value}")
            return report

        state.statistics.increment('totalChecks')
        state.last_check = now
        state.thresholds = copy.deepcopy(self.thresholds)

        if report.decision == TickDecision.COOLDOWN:
            remaining = CooldownGuard.remaining(state, now, self.thresholds.cooldown_period)
            self.logger.warning(f"需要恢复但处于冷却期，剩余 {int(remaining)} 秒")
        elif report.decision == TickDecision.RECOVER:
            await self._recover(state, report)
        else:
            state.consecutive_failures = 0

        await self.integrator.process_module_transitions(records)
        self.history.record(records)
        try:
            await self._persist(self.history.save)
        except OSError as e:
            self.logger.error(f"保存健康历史失败: {e}")
        if self.sampler is not None:
            await self.sampler.sample(records)
            try:
                await self._persist(self.sampler.save)
            except OSError as e:
                self.logger.error(f"保存性能报告失败: {e}")
        await self._persist(self.store.save, state)
        return report

    async def _recover(self, state: TriggerState, report: TickReport) -> None:
        state.last_recovery_attempt = self.clock()
        state.recovery_attempts += 1
        state.statistics.increment('triggeredRecoveries')
        state.current_severity = report.severity

        report.alert = self.integrator.build_alert(
            report.snapshot, report.severity, report.strategy,
            self.classifier.trigger_reason(report.snapshot)
        )
        await self._persist(self.store.save, state)
        await self.integrator.notify_recovering(report.alert)

        session = await self.executor.execute(report.severity, report.records)
        report.session = session
        if session.succeeded:
            state.statistics.increment('successfulRecoveries')
            state.consecutive_failures = 0
        else:
            state.statistics.increment('failedRecoveries')
            state.consecutive_failures += 1
            self.logger.error(f"恢复失败，连续失败次数: {state.consecutive_failures}")
        await self._persist(self.store.save, state)
        await self.integrator.notify_outcome(session, report.alert)

    async def test_once(self) -> TickReport:
        """试运行一次检查"""
        return await self.run_tick(dry_run=True)

    def reset(self) -> TriggerState:
        """
        将触发器状态恢复为默认值

        Raises:
            DaemonRunningError: 调度器或守护进程正在运行
        """
        running_pid = self.pid_file.running_pid()
        if self.is_running or running_pid is not None:
            raise DaemonRunningError(
                f"守护进程正在运行 (PID: {running_pid or os.getpid()})，请先停止"
            )
        return self.store.reset()

    def _performance_report(self) -> Optional[Dict[str, Any]]:
        if self.sampler is None:
            return None
        if self.sampler.has_samples:
            return self.sampler.report()
        # 守护进程在其他进程中运行时读取其保存的报告
        return self.sampler.saved_report()

    def status(self) -> Dict[str, Any]:
        """
        获取当前状态，不修改任何持久化数据

        Returns:
            Dict[str, Any]: 状态信息
        """
        state_error = None
        try:
            state = self.store.load()
        except StateCorruptionError as e:
            state_error = e.format_error()
            state = self.store.default_state()

        if self.is_running:
            pid = os.getpid()
        else:
            pid = self.pid_file.read()
            if pid is not None and not self.pid_file.is_alive(pid):
                pid = None
            # 其他进程写入的历史
            self.history.load()

        running = self.is_running or pid is not None
        now = self.clock()
        uptime = None
        if running and state.monitoring_started:
            uptime = max(0.0, (now - state.monitoring_started).total_seconds())
        cooldown = state.thresholds.cooldown_period

        status = {
            'scheduler_state': self._state.value,
            'running': running,
            'pid': pid,
            'uptime_seconds': uptime,
            'cooldown_remaining': CooldownGuard.remaining(state, now, cooldown),
            'last_check': format_timestamp(state.last_check),
            'modules': self.modules,
            'health': self.history.report(self.modules),
            'performance': self._performance_report()
        }
        status.update(state.to_dict())
        if state_error:
            status['state_error'] = state_error
        return status
