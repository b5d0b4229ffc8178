"""数据模型模块"""

from .health import (
    ModuleStatus, CheckResult, ProbeResult, ModuleHealthRecord,
    SystemHealthSnapshot, status_for_score
)
from .recovery import (
    Severity, RecoveryStrategy, SessionOutcome, TickDecision, NotificationEvent,
    TriggerStatistics, TriggerThresholds, TriggerState, Alert, AlertMessage,
    RecoverySession, TickReport
)

__all__ = [
    'ModuleStatus', 'CheckResult', 'ProbeResult', 'ModuleHealthRecord',
    'SystemHealthSnapshot', 'status_for_score',
    'Severity', 'RecoveryStrategy', 'SessionOutcome', 'TickDecision',
    'NotificationEvent', 'TriggerStatistics', 'TriggerThresholds', 'TriggerState',
    'Alert', 'AlertMessage', 'RecoverySession', 'TickReport'
]
