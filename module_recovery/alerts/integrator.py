"""告警系统集成器

把每次检查的结果转换为通知：模块告警级别的变化、恢复开始、恢复成功和恢复失败，
并把告警记录和恢复会话写入审计记录。
"""

import asyncio
import itertools
from typing import Dict, List, Any, Callable, Optional, Set, Tuple

from .manager import NotificationDispatcher
from ..models.health import ModuleHealthRecord, ModuleStatus, SystemHealthSnapshot
from ..models.recovery import (
    Alert, AlertMessage, NotificationEvent, RecoverySession, RecoveryStrategy, Severity
)
from ..services.audit_trail import AuditTrail
from ..services.health_history import HealthHistory
from ..services.performance_sampler import ThresholdBreach, SYSTEM_COMPONENT
from ..utils.log_manager import get_logger
from ..utils.timestamps import utc_now

ALERT_LEVEL_OK = 'ok'
ALERT_LEVEL_WARNING = 'warning'
ALERT_LEVEL_CRITICAL = 'critical'
_LEVEL_RANK = {ALERT_LEVEL_OK: 0, ALERT_LEVEL_WARNING: 1, ALERT_LEVEL_CRITICAL: 2}

_incident_counter = itertools.count(1)


def alert_level(status: ModuleStatus) -> str:
    """模块状态对应的告警级别"""
    if status in (ModuleStatus.OFFLINE, ModuleStatus.MISSING):
        return ALERT_LEVEL_CRITICAL
    if status == ModuleStatus.CRITICAL:
        return ALERT_LEVEL_WARNING
    return ALERT_LEVEL_OK


def new_incident_id() -> str:
    return f"AUTO-{int(utc_now().timestamp() * 1000)}-{next(_incident_counter)}"


class AlertIntegrator:
    """告警系统集成器"""

    def __init__(self, dispatcher: NotificationDispatcher,
                 history: Optional[HealthHistory] = None,
                 audit_trail: Optional[AuditTrail] = None):
        """初始化告警集成器

        Args:
            dispatcher: 通知分发器
            history: 模块健康历史，用于比较告警级别
            audit_trail: 审计记录
        """
        self.dispatcher = dispatcher
        self.history = history or HealthHistory()
        self.audit_trail = audit_trail or AuditTrail()
        self.logger = get_logger(__name__)
        self.alert_filters: List[Callable[[AlertMessage], bool]] = []
        self._deliveries: Set[asyncio.Task] = set()
        self.delivery_stats = {'completed': 0, 'failed': 0, 'cancelled': 0}

    def add_alert_filter(self, filter_func: Callable[[AlertMessage], bool]) -> None:
        """添加告警过滤器，返回False的消息不会被发送"""
        self.alert_filters.append(filter_func)

    def remove_alert_filter(self, filter_func: Callable[[AlertMessage], bool]) -> bool:
        try:
            self.alert_filters.remove(filter_func)
            return True
        except ValueError:
            return False

    def _should_alert(self, message: AlertMessage) -> bool:
        for filter_func in self.alert_filters:
            try:
                if not filter_func(message):
                    return False
            except Exception as e:
                # 过滤器失败时默认允许告警
                self.logger.error(f"告警过滤器执行失败: {e}")
        return True

    async def _emit(self, message: str, severity: str, event: NotificationEvent,
                    metadata: Optional[Dict[str, Any]] = None) -> bool:
        alert_message = AlertMessage(message=message, severity=severity, event=event,
                                     metadata=dict(metadata or {}))
        if not self._should_alert(alert_message):
            self.logger.debug(f"告警被过滤器阻止: {message}")
            return False
        task = asyncio.ensure_future(self.dispatcher.dispatch(alert_message))
        self._deliveries.add(task)
        task.add_done_callback(self._delivery_done)
        return True

    def _delivery_done(self, task: asyncio.Task) -> None:
        self._deliveries.discard(task)
        if task.cancelled():
            self.delivery_stats['cancelled'] += 1
            return
        error = task.exception()
        if error is not None:
            self.delivery_stats['failed'] += 1
            self.logger.error(f"通知投递异常: {error}", exc_info=error)
            return
        self.delivery_stats['completed'] += 1
        for result in task.result() or []:
            if not result.get('success'):
                self.delivery_stats['failed'] += 1

    @property
    def pending_deliveries(self) -> int:
        return len(self._deliveries)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        等待后台通知投递完成

        Args:
            timeout: 最长等待秒数，为空时一直等待

        Returns:
            int: 超时后被取消的投递数量
        """
        if not self._deliveries:
            return 0
        _, pending = await asyncio.wait(set(self._deliveries), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.logger.warning(f"{len(pending)} 条通知未在 {timeout} 秒内投递完成，已取消")
        return len(pending)

    async def process_module_transitions(
            self, records: List[ModuleHealthRecord]) -> List[Tuple[str, str, str]]:
        """
        比较每个模块与上一次采样的告警级别，级别变差时发送 degraded，
        恢复为 ok 时发送 recovered

        需要在本次记录写入健康历史之前调用。通知在后台投递，不等待发送完成。

        Args:
            records: 本次检查的模块健康记录

        Returns:
            List[Tuple[str, str, str]]: (模块, 旧级别, 新级别) 的变化列表
        """
        transitions = []
        for record in records:
            previous = self.history.latest(record.module_id)
            old_level = alert_level(previous.status) if previous else ALERT_LEVEL_OK
            new_level = alert_level(record.status)
            if old_level == new_level:
                continue

            metadata = {
                'module': record.module_id,
                'score': record.score,
                'status': record.status.value,
                'issues': '; '.join(record.issues),
                'recommendations': '; '.join(record.recommendations)
            }
            if _LEVEL_RANK[new_level] > _LEVEL_RANK[old_level]:
                text = (f"Module {record.module_id} is {record.status.value} "
                        f"(score: {record.score}/100)")
                if record.issues:
                    text += f"\nIssues: {', '.join(record.issues)}"
                await self._emit(text, new_level, NotificationEvent.DEGRADED, metadata)
            elif new_level == ALERT_LEVEL_OK:
                await self._emit(
                    f"Module {record.module_id} recovered: {record.status.value} "
                    f"(score: {record.score}/100)",
                    'success', NotificationEvent.RECOVERED, metadata
                )
            else:
                continue
            transitions.append((record.module_id, old_level, new_level))
        return transitions

    def build_alert(self, snapshot: SystemHealthSnapshot, severity: Severity,
                    strategy: RecoveryStrategy,
                    reason: Optional[Tuple[str, int]]) -> Alert:
        """
        生成告警记录并写入审计记录

        Args:
            snapshot: 系统健康快照
            severity: 严重级别
            strategy: 将要执行的恢复策略
            reason: (阈值名称, 触发值)，为空时使用平均分

        Returns:
            Alert: 告警记录
        """
        threshold_name, trigger_value = reason or ('healthThreshold', snapshot.average_score)
        alert = Alert(
            incident_id=new_incident_id(),
            threshold_name=threshold_name,
            action=strategy.value,
            trigger_value=trigger_value,
            severity=severity
        )
        self.logger.critical(
            f"阈值 {threshold_name} 被突破 (值: {trigger_value})，"
            f"事件 {alert.incident_id} 启动 {strategy.value}"
        )
        self.audit_trail.record_alert(alert)
        return alert

    async def notify_recovering(self, alert: Alert) -> None:
        await self._emit(
            f"Automated recovery initiated with severity: {alert.severity.value}",
            alert.severity.value,
            NotificationEvent.RECOVERING,
            {'incident_id': alert.incident_id, 'strategy': alert.action,
             'threshold': alert.threshold_name, 'trigger_value': alert.trigger_value}
        )

    async def notify_outcome(self, session: RecoverySession,
                             alert: Optional[Alert] = None) -> None:
        """发送恢复结果通知并记录会话"""
        incident_id = alert.incident_id if alert else None
        self.audit_trail.record_session(session, incident_id)

        metadata = {'incident_id': incident_id, 'strategy': session.strategy.value,
                    'session_id': session.id}
        if session.succeeded:
            await self._emit("Automated recovery completed successfully", 'success',
                             NotificationEvent.RECOVERED, metadata)
        else:
            metadata['error'] = session.error
            await self._emit(
                f"Automated recovery failed for strategy: {session.strategy.value}",
                'error', NotificationEvent.RECOVERY_FAILED, metadata
            )

    async def notify_performance(self, breach: ThresholdBreach) -> None:
        """发送性能指标超过阈值的通知"""
        metadata = {'component': breach.component, 'metric': breach.metric,
                    'value': round(breach.value, 2), 'threshold': breach.threshold}
        if breach.component != SYSTEM_COMPONENT:
            metadata['module'] = breach.component
        await self._emit(breach.message, ALERT_LEVEL_WARNING, NotificationEvent.PERFORMANCE,
                         metadata)

    def get_alert_stats(self) -> Dict[str, Any]:
        return {
            'alerter_count': len(self.dispatcher.alerters),
            'alerter_names': self.dispatcher.get_alerter_names(),
            'filter_count': len(self.alert_filters),
            'recent_alerts': len(self.audit_trail.recent(kind='alert')),
            'pending_deliveries': self.pending_deliveries,
            'delivery_stats': dict(self.delivery_stats)
        }
