"""触发器状态、告警与恢复会话的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Set, Union

from .health import ModuleHealthRecord, SystemHealthSnapshot
from ..utils.timestamps import utc_now, format_timestamp, parse_timestamp


class Severity(Enum):
    """恢复严重级别，NONE 仅用于尚未处理过任何恢复的持久化状态"""
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"


class RecoveryStrategy(Enum):
    """逐级升级的恢复策略"""
    DEPENDENCY_CHECK = "dependency_check"
    INCREMENTAL_REBUILD = "incremental_rebuild"
    FULL_RECOVERY = "full_recovery"
    EMERGENCY_RESET = "emergency_reset"


class SessionOutcome(Enum):
    """恢复会话结果"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class TickDecision(Enum):
    """单次检查的决策结果"""
    HEALTHY = "healthy"
    COOLDOWN = "cooldown"
    RECOVER = "recover"
    DRY_RUN = "dry_run"


class NotificationEvent(Enum):
    """通知对应的状态转换"""
    DEGRADED = "degraded"
    RECOVERING = "recovering"
    RECOVERED = "recovered"
    RECOVERY_FAILED = "recovery_failed"
    PERFORMANCE = "performance"


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"字段 {name} 必须是整数: {value!r}")
    return value


@dataclass
class TriggerStatistics:
    """单调递增的统计计数器"""
    total_checks: int = 0
    triggered_recoveries: int = 0
    successful_recoveries: int = 0
    failed_recoveries: int = 0

    # 持久化键名 -> 属性名
    KEYS = {
        'totalChecks': 'total_checks',
        'triggeredRecoveries': 'triggered_recoveries',
        'successfulRecoveries': 'successful_recoveries',
        'failedRecoveries': 'failed_recoveries'
    }

    def increment(self, counter_name: str) -> int:
        """
        计数器加一

        Args:
            counter_name: 计数器名称，支持持久化键名或属性名

        Returns:
            int: 新的计数值

        Raises:
            ValueError: 未知的计数器
        """
        attr = self.KEYS.get(counter_name, counter_name)
        if attr not in self.KEYS.values():
            raise ValueError(f"未知的计数器: {counter_name}")
        value = getattr(self, attr) + 1
        setattr(self, attr, value)
        return value

    def to_dict(self) -> Dict[str, int]:
        return {key: getattr(self, attr) for key, attr in self.KEYS.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TriggerStatistics':
        stats = cls()
        for key, attr in cls.KEYS.items():
            if key in data:
                setattr(stats, attr, _as_int(data[key], key))
        return stats


@dataclass
class TriggerThresholds:
    """触发阈值配置"""
    health_threshold: int = 70
    critical_module_count: int = 3
    monitoring_interval: int = 60
    cooldown_period: int = 1800

    KEYS = {
        'healthThreshold': 'health_threshold',
        'criticalModuleCount': 'critical_module_count',
        'monitoringInterval': 'monitoring_interval',
        'cooldownPeriod': 'cooldown_period'
    }

    def to_dict(self) -> Dict[str, int]:
        return {key: getattr(self, attr) for key, attr in self.KEYS.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TriggerThresholds':
        thresholds = cls()
        for key, attr in cls.KEYS.items():
            if key in data:
                setattr(thresholds, attr, _as_int(data[key], key))
        return thresholds

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'TriggerThresholds':
        """由YAML配置中的 thresholds 段创建（蛇形命名）"""
        defaults = cls()
        return cls(
            health_threshold=config.get('health_threshold', defaults.health_threshold),
            critical_module_count=config.get('critical_module_count',
                                             defaults.critical_module_count),
            monitoring_interval=config.get('monitoring_interval',
                                           defaults.monitoring_interval),
            cooldown_period=config.get('cooldown_period', defaults.cooldown_period)
        )


@dataclass
class TriggerState:
    """进程级触发器状态，由调度器独占修改并通过状态存储持久化"""
    is_active: bool = False
    last_check: Optional[datetime] = None
    last_recovery_attempt: Optional[datetime] = None
    consecutive_failures: int = 0
    recovery_attempts: int = 0
    current_severity: Severity = Severity.NONE
    monitoring_started: Optional[datetime] = None
    statistics: TriggerStatistics = field(default_factory=TriggerStatistics)
    thresholds: TriggerThresholds = field(default_factory=TriggerThresholds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'triggerState': {
                'isActive': self.is_active,
                'lastCheck': format_timestamp(self.last_check),
                'lastRecoveryAttempt': format_timestamp(self.last_recovery_attempt),
                'consecutiveFailures': self.consecutive_failures,
                'recoveryAttempts': self.recovery_attempts,
                'currentSeverity': self.current_severity.value,
                'monitoringStarted': format_timestamp(self.monitoring_started)
            },
            'thresholds': self.thresholds.to_dict(),
            'statistics': self.statistics.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TriggerState':
        """
        从持久化字典恢复状态，忽略未知字段，缺失字段使用默认值

        Raises:
            ValueError: 字段类型或取值无效
        """
        if not isinstance(data, dict):
            raise ValueError("状态文件根节点必须是对象")

        trigger = data.get('triggerState', {})
        thresholds = data.get('thresholds', {})
        statistics = data.get('statistics', {})
        for name, section in (('triggerState', trigger), ('thresholds', thresholds),
                              ('statistics', statistics)):
            if not isinstance(section, dict):
                raise ValueError(f"{name} 必须是对象")

        is_active = trigger.get('isActive', False)
        if not isinstance(is_active, bool):
            raise ValueError(f"字段 isActive 必须是布尔值: {is_active!r}")

        consecutive_failures = _as_int(trigger.get('consecutiveFailures', 0),
                                       'consecutiveFailures')
        if consecutive_failures < 0:
            raise ValueError("consecutiveFailures 不能为负数")

        return cls(
            is_active=is_active,
            last_check=parse_timestamp(trigger.get('lastCheck')),
            last_recovery_attempt=parse_timestamp(trigger.get('lastRecoveryAttempt')),
            consecutive_failures=consecutive_failures,
            recovery_attempts=_as_int(trigger.get('recoveryAttempts', 0),
                                      'recoveryAttempts'),
            current_severity=Severity(trigger.get('currentSeverity', 'none')),
            monitoring_started=parse_timestamp(trigger.get('monitoringStarted')),
            statistics=TriggerStatistics.from_dict(statistics),
            thresholds=TriggerThresholds.from_dict(thresholds)
        )


@dataclass(frozen=True)
class Alert:
    """阈值触发时生成的告警记录，创建后不可修改"""
    incident_id: str
    threshold_name: str
    action: str
    trigger_value: Union[int, float, str]
    severity: Severity
    timestamp: datetime = field(default_factory=utc_now)
    auto_triggered: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'incidentId': self.incident_id,
            'thresholdName': self.threshold_name,
            'action': self.action,
            'triggerValue': self.trigger_value,
            'severity': self.severity.value,
            'timestamp': format_timestamp(self.timestamp),
            'autoTriggered': self.auto_triggered
        }


@dataclass
class AlertMessage:
    """发送给通知渠道的消息"""
    message: str
    severity: str
    event: Optional[NotificationEvent] = None
    title: str = "Automated Recovery Alert"
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'severity': self.severity,
            'event': self.event.value if self.event else None,
            'title': self.title,
            'timestamp': format_timestamp(self.timestamp),
            'metadata': self.metadata
        }


@dataclass
class RecoverySession:
    """一次恢复尝试"""
    id: str
    strategy: RecoveryStrategy
    severity: Severity
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    outcome: SessionOutcome = SessionOutcome.PENDING
    affected_modules: Set[str] = field(default_factory=set)
    failed_modules: Set[str] = field(default_factory=set)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == SessionOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'strategy': self.strategy.value,
            'severity': self.severity.value,
            'startedAt': format_timestamp(self.started_at),
            'finishedAt': format_timestamp(self.finished_at),
            'outcome': self.outcome.value,
            'affectedModules': sorted(self.affected_modules),
            'failedModules': sorted(self.failed_modules),
            'error': self.error
        }


@dataclass
class TickReport:
    """单次检查的完整结果"""
    records: List[ModuleHealthRecord]
    snapshot: SystemHealthSnapshot
    severity: Severity
    should_trigger: bool
    in_cooldown: bool
    decision: TickDecision
    strategy: Optional[RecoveryStrategy] = None
    session: Optional[RecoverySession] = None
    alert: Optional[Alert] = None
    dry_run: bool = False

    @property
    def recovery_needed(self) -> bool:
        return self.should_trigger

    def to_dict(self) -> Dict[str, Any]:
        return {
            'snapshot': self.snapshot.to_dict(),
            'severity': self.severity.value,
            'shouldTrigger': self.should_trigger,
            'inCooldown': self.in_cooldown,
            'decision': self.decision.value,
            'strategy': self.strategy.value if self.strategy else None,
            'session': self.session.to_dict() if self.session else None,
            'alert': self.alert.to_dict() if self.alert else None,
            'dryRun': self.dry_run,
            'modules': [record.to_dict() for record in self.records]
        }
