"""严重级别分类与触发判断"""

from typing import Dict, Optional, Tuple

from ..models.health import SystemHealthSnapshot
from ..models.recovery import Severity, RecoveryStrategy, TriggerThresholds

# (严重模块数, 平均分下限, 连续失败次数)，按优先级从高到低排列
SEVERITY_RULES = [
    (Severity.CRITICAL, 5, 30, 5),
    (Severity.SEVERE, 3, 50, 3),
    (Severity.MODERATE, 1, 70, 1),
]

STRATEGIES: Dict[Severity, RecoveryStrategy] = {
    Severity.MINOR: RecoveryStrategy.DEPENDENCY_CHECK,
    Severity.MODERATE: RecoveryStrategy.INCREMENTAL_REBUILD,
    Severity.SEVERE: RecoveryStrategy.FULL_RECOVERY,
    Severity.CRITICAL: RecoveryStrategy.EMERGENCY_RESET,
}


class SeverityClassifier:
    """
    根据系统快照和连续失败次数计算严重级别

    触发判断与严重级别相互独立：触发只看健康阈值和严重模块数阈值，
    两者在严重模块数上的条件有重叠，保持原样不做合并。
    """

    def __init__(self, thresholds: Optional[TriggerThresholds] = None):
        self.thresholds = thresholds or TriggerThresholds()

    def classify(self, snapshot: SystemHealthSnapshot, consecutive_failures: int) -> Severity:
        """
        计算严重级别，第一条匹配的规则生效

        Args:
            snapshot: 系统健康快照
            consecutive_failures: 连续失败次数

        Returns:
            Severity: 严重级别（不会返回 NONE）
        """
        for severity, critical_count, average_below, failures in SEVERITY_RULES:
            if (snapshot.critical_module_count >= critical_count
                    or snapshot.average_score < average_below
                    or consecutive_failures >= failures):
                return severity
        return Severity.MINOR

    def should_trigger(self, snapshot: SystemHealthSnapshot) -> bool:
        """是否满足触发恢复的条件"""
        return self.trigger_reason(snapshot) is not None

    def trigger_reason(self, snapshot: SystemHealthSnapshot) -> Optional[Tuple[str, int]]:
        """
        返回第一个被突破的阈值

        Returns:
            Optional[Tuple[str, int]]: (阈值名称, 触发值)，未触发时为 None
        """
        if snapshot.average_score < self.thresholds.health_threshold:
            return 'healthThreshold', snapshot.average_score
        if snapshot.critical_module_count >= self.thresholds.critical_module_count:
            return 'criticalModuleCount', snapshot.critical_module_count
        return None

    @staticmethod
    def strategy_for(severity: Severity) -> RecoveryStrategy:
        """
        严重级别对应的恢复策略

        Raises:
            ValueError: 严重级别为 NONE
        """
        if severity not in STRATEGIES:
            raise ValueError(f"严重级别 {severity.value} 没有对应的恢复策略")
        return STRATEGIES[severity]
