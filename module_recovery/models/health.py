"""模块健康相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional

from ..utils.timestamps import utc_now, format_timestamp

HEALTHY_SCORE = 90
DEGRADED_SCORE = 70
CRITICAL_SCORE = 30


class ModuleStatus(Enum):
    """模块健康状态"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    OFFLINE = "offline"
    MISSING = "missing"

    @property
    def is_critical(self) -> bool:
        """是否计入严重模块数（评分低于70）"""
        return self in (ModuleStatus.CRITICAL, ModuleStatus.OFFLINE, ModuleStatus.MISSING)


def status_for_score(score: int) -> ModuleStatus:
    """
    根据评分确定模块状态

    90-100 健康，70-89 降级，30-69 严重，0-29 离线

    Args:
        score: 健康评分

    Returns:
        ModuleStatus: 模块状态
    """
    if score >= HEALTHY_SCORE:
        return ModuleStatus.HEALTHY
    if score >= DEGRADED_SCORE:
        return ModuleStatus.DEGRADED
    if score >= CRITICAL_SCORE:
        return ModuleStatus.CRITICAL
    return ModuleStatus.OFFLINE


@dataclass
class ProbeResult:
    """外部探测命令的执行结果"""
    passed: bool
    detail: Optional[str] = None
    duration: float = 0.0


@dataclass
class CheckResult:
    """单项健康检查结果，weight 为检查失败时扣除的分数"""
    name: str
    passed: bool
    weight: int
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'passed': self.passed,
            'weight': self.weight,
            'detail': self.detail
        }


@dataclass
class ModuleHealthRecord:
    """单个模块在一次检查中的健康记录"""
    module_id: str
    score: int
    status: ModuleStatus
    checks: List[CheckResult] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    duration: float = 0.0
    # 各探测命令的耗时（秒），键为 type_check、build、test
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def failed_checks(self) -> List[CheckResult]:
        return [check for check in self.checks if not check.passed]

    @property
    def issues(self) -> List[str]:
        """失败检查项的描述"""
        return [check.detail or check.name for check in self.failed_checks]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'module_id': self.module_id,
            'score': self.score,
            'status': self.status.value,
            'checks': [check.to_dict() for check in self.checks],
            'recommendations': list(self.recommendations),
            'timestamp': format_timestamp(self.timestamp),
            'duration': round(self.duration, 3),
            'timings': {name: round(value, 3) for name, value in self.timings.items()}
        }


@dataclass
class SystemHealthSnapshot:
    """整个工作区的健康快照，每次检查时由模块记录汇总得出"""
    average_score: int
    critical_module_count: int
    total_modules: int
    timestamp: datetime = field(default_factory=utc_now)
    status_counts: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_records(cls, records: List[ModuleHealthRecord],
                     timestamp: Optional[datetime] = None) -> 'SystemHealthSnapshot':
        """
        由模块健康记录汇总快照

        Args:
            records: 模块健康记录列表
            timestamp: 快照时间，默认当前时间

        Returns:
            SystemHealthSnapshot: 健康快照
        """
        total = len(records)
        total_score = sum(record.score for record in records)
        counts = {status.value: 0 for status in ModuleStatus}
        for record in records:
            counts[record.status.value] += 1

        return cls(
            average_score=total_score // total if total else 0,
            critical_module_count=sum(1 for r in records if r.status.is_critical),
            total_modules=total,
            timestamp=timestamp or utc_now(),
            status_counts=counts
        )

    @property
    def workspace_status(self) -> str:
        """工作区整体状态：healthy / degraded / critical"""
        healthy = self.status_counts.get(ModuleStatus.HEALTHY.value, 0)
        critical = self.status_counts.get(ModuleStatus.CRITICAL.value, 0)
        offline = (self.status_counts.get(ModuleStatus.OFFLINE.value, 0) +
                   self.status_counts.get(ModuleStatus.MISSING.value, 0))

        if self.average_score < DEGRADED_SCORE or critical > 0 or offline > 0:
            return 'critical'
        if self.average_score < HEALTHY_SCORE and healthy < self.total_modules * 80 // 100:
            return 'degraded'
        return 'healthy'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'averageHealth': self.average_score,
            'criticalModules': self.critical_module_count,
            'totalModules': self.total_modules,
            'timestamp': format_timestamp(self.timestamp),
            'statusCounts': dict(self.status_counts),
            'workspaceStatus': self.workspace_status
        }
