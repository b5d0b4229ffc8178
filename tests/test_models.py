"""数据模型测试"""

import pytest
from datetime import datetime, timezone
from dataclasses import FrozenInstanceError

from module_recovery.models.health import (
    ModuleStatus, CheckResult, ModuleHealthRecord, SystemHealthSnapshot, status_for_score
)
from module_recovery.models.recovery import (
    Alert, AlertMessage, NotificationEvent, RecoverySession, RecoveryStrategy,
    SessionOutcome, Severity, TriggerState, TriggerStatistics, TriggerThresholds
)


def make_records(scores):
    return [ModuleHealthRecord(f"module-{i}", score, status_for_score(score))
            for i, score in enumerate(scores)]


class TestModuleStatus:
    """模块状态划分测试"""

    @pytest.mark.parametrize("score,expected", [
        (100, ModuleStatus.HEALTHY),
        (90, ModuleStatus.HEALTHY),
        (89, ModuleStatus.DEGRADED),
        (70, ModuleStatus.DEGRADED),
        (69, ModuleStatus.CRITICAL),
        (30, ModuleStatus.CRITICAL),
        (29, ModuleStatus.OFFLINE),
        (0, ModuleStatus.OFFLINE),
    ])
    def test_status_boundaries(self, score, expected):
        """测试评分边界对应的状态"""
        assert status_for_score(score) == expected

    def test_is_critical(self):
        """测试计入严重模块数的状态"""
        assert ModuleStatus.CRITICAL.is_critical
        assert ModuleStatus.OFFLINE.is_critical
        assert ModuleStatus.MISSING.is_critical
        assert not ModuleStatus.DEGRADED.is_critical
        assert not ModuleStatus.HEALTHY.is_critical


class TestModuleHealthRecord:
    """模块健康记录测试"""

    def test_issues_from_failed_checks(self):
        """测试失败检查项的描述"""
        record = ModuleHealthRecord(
            'auth', 55, ModuleStatus.CRITICAL,
            checks=[
                CheckResult('manifest_present', True, 30),
                CheckResult('dependencies_installed', False, 15, 'node_modules missing'),
                CheckResult('lock_file_present', False, 5)
            ]
        )

        assert [c.name for c in record.failed_checks] == ['dependencies_installed',
                                                         'lock_file_present']
        assert record.issues == ['node_modules missing', 'lock_file_present']

    def test_to_dict(self):
        """测试转换为字典"""
        record = ModuleHealthRecord(
            'auth', 95, ModuleStatus.HEALTHY,
            timestamp=datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        )
        data = record.to_dict()

        assert data['module_id'] == 'auth'
        assert data['status'] == 'healthy'
        assert data['timestamp'] == '2024-01-01T12:00:00.123Z'


class TestSystemHealthSnapshot:
    """系统健康快照测试"""

    def test_from_records(self):
        """测试由模块记录汇总快照"""
        snapshot = SystemHealthSnapshot.from_records(make_records([20] * 4 + [95] * 7))

        assert snapshot.total_modules == 11
        assert snapshot.average_score == (20 * 4 + 95 * 7) // 11
        assert snapshot.critical_module_count == 4
        assert snapshot.status_counts['offline'] == 4
        assert snapshot.status_counts['healthy'] == 7

    def test_average_is_floored(self):
        """测试平均分向下取整"""
        snapshot = SystemHealthSnapshot.from_records(make_records([70, 71]))
        assert snapshot.average_score == 70

    def test_empty_records(self):
        """测试没有模块时平均分为0"""
        snapshot = SystemHealthSnapshot.from_records([])

        assert snapshot.average_score == 0
        assert snapshot.critical_module_count == 0
        assert snapshot.total_modules == 0

    def test_workspace_status(self):
        """测试工作区整体状态"""
        assert SystemHealthSnapshot.from_records(
            make_records([95] * 11)).workspace_status == 'healthy'
        assert SystemHealthSnapshot.from_records(
            make_records([80] * 11)).workspace_status == 'degraded'
        assert SystemHealthSnapshot.from_records(
            make_records([95] * 10 + [50])).workspace_status == 'critical'

    def test_to_dict_keys(self):
        """测试快照字典字段"""
        data = SystemHealthSnapshot.from_records(make_records([95])).to_dict()
        assert data['averageHealth'] == 95
        assert data['criticalModules'] == 0
        assert data['totalModules'] == 1
        assert data['workspaceStatus'] == 'healthy'


class TestTriggerStatistics:
    """统计计数器测试"""

    def test_increment_by_persisted_key(self):
        """测试使用持久化键名递增"""
        stats = TriggerStatistics()
        assert stats.increment('totalChecks') == 1
        assert stats.increment('totalChecks') == 2
        assert stats.total_checks == 2

    def test_increment_by_attribute_name(self):
        """测试使用属性名递增"""
        stats = TriggerStatistics()
        stats.increment('failed_recoveries')
        assert stats.to_dict()['failedRecoveries'] == 1

    def test_increment_unknown_counter(self):
        """测试未知计数器"""
        with pytest.raises(ValueError):
            TriggerStatistics().increment('unknownCounter')


class TestTriggerThresholds:
    """触发阈值测试"""

    def test_defaults(self):
        """测试默认阈值"""
        assert TriggerThresholds().to_dict() == {
            'healthThreshold': 70,
            'criticalModuleCount': 3,
            'monitoringInterval': 60,
            'cooldownPeriod': 1800
        }

    def test_from_config(self):
        """测试由YAML配置创建"""
        thresholds = TriggerThresholds.from_config({'health_threshold': 60,
                                                    'cooldown_period': 0})
        assert thresholds.health_threshold == 60
        assert thresholds.cooldown_period == 0
        assert thresholds.critical_module_count == 3


class TestTriggerState:
    """触发器状态测试"""

    def test_default_layout(self):
        """测试默认状态的持久化结构"""
        data = TriggerState().to_dict()

        assert data['triggerState'] == {
            'isActive': False,
            'lastCheck': None,
            'lastRecoveryAttempt': None,
            'consecutiveFailures': 0,
            'recoveryAttempts': 0,
            'currentSeverity': 'none',
            'monitoringStarted': None
        }
        assert data['statistics'] == {
            'totalChecks': 0,
            'triggeredRecoveries': 0,
            'successfulRecoveries': 0,
            'failedRecoveries': 0
        }

    def test_round_trip(self):
        """测试字典往返转换"""
        state = TriggerState(
            is_active=True,
            last_check=datetime(2024, 5, 1, 8, 30, 0, 250000, tzinfo=timezone.utc),
            consecutive_failures=2,
            recovery_attempts=4,
            current_severity=Severity.SEVERE
        )
        state.statistics.increment('totalChecks')

        restored = TriggerState.from_dict(state.to_dict())
        assert restored == state

    def test_unknown_fields_ignored(self):
        """测试忽略未知字段"""
        data = TriggerState().to_dict()
        data['extra'] = {'foo': 1}
        data['triggerState']['legacyField'] = True

        assert TriggerState.from_dict(data) == TriggerState()

    def test_missing_sections_use_defaults(self):
        """测试缺失的字段使用默认值"""
        assert TriggerState.from_dict({}) == TriggerState()

    @pytest.mark.parametrize("data", [
        [],
        {'triggerState': {'consecutiveFailures': -1}},
        {'triggerState': {'consecutiveFailures': 'three'}},
        {'triggerState': {'isActive': 'yes'}},
        {'triggerState': {'currentSeverity': 'apocalyptic'}},
        {'triggerState': {'lastCheck': 'not-a-date'}},
        {'statistics': {'totalChecks': 1.5}},
        {'thresholds': []},
    ])
    def test_invalid_data(self, data):
        """测试无效的状态数据"""
        with pytest.raises(ValueError):
            TriggerState.from_dict(data)


class TestAlertModels:
    """告警与会话模型测试"""

    def test_alert_is_immutable(self):
        """测试告警记录不可修改"""
        alert = Alert('AUTO-1', 'healthThreshold', 'full_recovery', 45, Severity.SEVERE)

        with pytest.raises(FrozenInstanceError):
            alert.action = 'emergency_reset'

    def test_alert_to_dict(self):
        """测试告警记录字段"""
        data = Alert('AUTO-1', 'criticalModuleCount', 'full_recovery', 4,
                     Severity.SEVERE).to_dict()

        assert data['incidentId'] == 'AUTO-1'
        assert data['thresholdName'] == 'criticalModuleCount'
        assert data['triggerValue'] == 4
        assert data['severity'] == 'severe'
        assert data['autoTriggered'] is True

    def test_alert_message_to_dict(self):
        """测试通知消息字段"""
        message = AlertMessage('recovered', 'success', NotificationEvent.RECOVERED)
        data = message.to_dict()

        assert data['event'] == 'recovered'
        assert data['title'] == 'Automated Recovery Alert'

    def test_session_to_dict(self):
        """测试恢复会话字段"""
        session = RecoverySession('RS-1', RecoveryStrategy.INCREMENTAL_REBUILD,
                                  Severity.MODERATE,
                                  affected_modules={'b', 'a'}, failed_modules={'b'})
        data = session.to_dict()

        assert not session.succeeded
        assert data['outcome'] == 'pending'
        assert data['affectedModules'] == ['a', 'b']
        assert data['failedModules'] == ['b']

        session.outcome = SessionOutcome.SUCCESS
        assert session.succeeded
