"""监控调度器测试模块"""

import asyncio
import json
import os
import threading

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

from module_recovery.alerts.integrator import AlertIntegrator
from module_recovery.models.health import ModuleHealthRecord, status_for_score
from module_recovery.models.recovery import (
    NotificationEvent, RecoverySession, SessionOutcome, Severity, TickDecision,
    TriggerThresholds, RecoveryStrategy
)
from module_recovery.services.audit_trail import AuditTrail
from module_recovery.services.health_history import HealthHistory
from module_recovery.services.monitor_scheduler import MonitorScheduler, SchedulerState
from module_recovery.services.performance_sampler import PerformanceSampler, SystemMetrics
from module_recovery.services.pid_file import PidFile
from module_recovery.services.severity_classifier import SeverityClassifier
from module_recovery.services.state_store import TriggerStateStore
from module_recovery.utils.exceptions import DaemonAlreadyRunningError, DaemonRunningError

MODULES = ['auth', 'i18n', 'workflow', 'admin', 'reporting', 'billing', 'search',
           'storage', 'gateway', 'scheduler', 'ui']
START = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def records_for(scores):
    return [ModuleHealthRecord(module_id, score, status_for_score(score))
            for module_id, score in zip(MODULES, scores)]


def session_for(severity, outcome):
    return RecoverySession('RS-test', SeverityClassifier.strategy_for(severity), severity,
                           outcome=outcome)


class TestMonitorScheduler:
    """监控调度器测试类"""

    @pytest.fixture
    def env(self, tmp_path):
        clock = FakeClock()
        scorer = Mock()
        scorer.score_all = AsyncMock(return_value=records_for([95] * 11))
        executor = Mock()
        executor.execute = AsyncMock(
            side_effect=lambda severity, records: session_for(severity, SessionOutcome.SUCCESS))
        dispatcher = Mock()
        dispatcher.dispatch = AsyncMock(return_value=[])
        history = HealthHistory(str(tmp_path / 'history.json'))
        integrator = AlertIntegrator(dispatcher, history, AuditTrail())
        store = TriggerStateStore(str(tmp_path / 'state.json'))
        scheduler = MonitorScheduler(
            scorer, MODULES, store, executor, integrator,
            thresholds=TriggerThresholds(), history=history,
            pid_file=PidFile(str(tmp_path / 'run' / 'recovery.pid')), clock=clock
        )
        return {
            'scheduler': scheduler, 'scorer': scorer, 'executor': executor,
            'dispatcher': dispatcher, 'store': store, 'clock': clock, 'tmp_path': tmp_path
        }

    async def events(self, env):
        await env['scheduler'].integrator.drain()
        return [call.args[0].event for call in env['dispatcher'].dispatch.await_args_list]

    @pytest.mark.asyncio
    async def test_healthy_workspace(self, env):
        """测试所有模块健康时不执行恢复"""
        report = await env['scheduler'].run_tick()

        assert report.snapshot.average_score == 95
        assert report.snapshot.critical_module_count == 0
        assert report.severity == Severity.MINOR
        assert report.should_trigger is False
        assert report.decision == TickDecision.HEALTHY
        env['executor'].execute.assert_not_called()

        state = env['store'].load()
        assert state.statistics.total_checks == 1
        assert state.statistics.triggered_recoveries == 0
        assert state.last_check == START

    @pytest.mark.asyncio
    async def test_critical_module_count_triggers_full_recovery(self, env):
        """测试严重模块数达到阈值时执行完整恢复"""
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)

        report = await env['scheduler'].run_tick()

        assert report.snapshot.critical_module_count == 4
        assert report.severity == Severity.SEVERE
        assert report.should_trigger is True
        assert report.decision == TickDecision.RECOVER
        assert report.strategy == RecoveryStrategy.FULL_RECOVERY
        env['executor'].execute.assert_awaited_once()
        assert env['executor'].execute.call_args.args[0] == Severity.SEVERE

        state = env['store'].load()
        assert state.statistics.triggered_recoveries == 1
        assert state.statistics.successful_recoveries == 1
        assert state.recovery_attempts == 1
        assert state.last_recovery_attempt == START
        assert state.current_severity == Severity.SEVERE
        assert report.alert.threshold_name == 'healthThreshold'
        assert report.alert.trigger_value == 67

    @pytest.mark.asyncio
    async def test_notification_order(self, env):
        """测试恢复开始通知先于结果通知"""
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)

        await env['scheduler'].run_tick()

        events = await self.events(env)
        assert events[0] == NotificationEvent.RECOVERING
        assert events[1] == NotificationEvent.RECOVERED
        assert events.count(NotificationEvent.DEGRADED) == 4

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_recovery(self, env):
        """测试冷却期内不执行恢复且不改变连续失败次数"""
        store = env['store']
        state = store.load()
        state.last_recovery_attempt = START - timedelta(minutes=5)
        state.consecutive_failures = 2
        store.save(state)
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)

        report = await env['scheduler'].run_tick()

        assert report.should_trigger is True
        assert report.in_cooldown is True
        assert report.decision == TickDecision.COOLDOWN
        env['executor'].execute.assert_not_called()
        assert store.load().consecutive_failures == 2
        assert NotificationEvent.RECOVERING not in (await self.events(env))

    @pytest.mark.asyncio
    async def test_cooldown_is_idempotent(self, env):
        """测试冷却期内多次检查都不会启动恢复"""
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)
        scheduler = env['scheduler']

        await scheduler.run_tick()
        for _ in range(3):
            env['clock'].advance(60)
            report = await scheduler.run_tick()
            assert report.decision == TickDecision.COOLDOWN

        assert env['executor'].execute.await_count == 1
        assert env['store'].load().statistics.total_checks == 4

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, env):
        """测试冷却期结束后再次恢复"""
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)
        scheduler = env['scheduler']

        await scheduler.run_tick()
        env['clock'].advance(1800)
        report = await scheduler.run_tick()

        assert report.decision == TickDecision.RECOVER
        assert env['executor'].execute.await_count == 2

    @pytest.mark.asyncio
    async def test_consecutive_failures_escalate_severity(self, env):
        """测试连续三次恢复失败后即使平均分回升也判定为 severe"""
        scheduler = env['scheduler']
        scheduler.update_thresholds(TriggerThresholds(cooldown_period=0))
        env['executor'].execute.side_effect = \
            lambda severity, records: session_for(severity, SessionOutcome.FAILURE)
        env['scorer'].score_all.return_value = records_for([40] + [72] * 10)

        failures = []
        for _ in range(3):
            report = await scheduler.run_tick()
            assert report.decision == TickDecision.RECOVER
            failures.append(env['store'].load().consecutive_failures)
            env['clock'].advance(60)

        assert failures == [1, 2, 3]
        assert env['store'].load().statistics.failed_recoveries == 3

        env['scorer'].score_all.return_value = records_for([75] * 11)
        report = await scheduler.run_tick()

        assert report.snapshot.average_score == 75
        assert report.severity == Severity.SEVERE
        assert report.should_trigger is False
        assert report.decision == TickDecision.HEALTHY
        assert report.strategy is None
        assert env['executor'].execute.await_count == 3
        assert env['store'].load().consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failure_resets_after_success(self, env):
        """测试恢复成功后连续失败次数清零"""
        scheduler = env['scheduler']
        scheduler.update_thresholds(TriggerThresholds(cooldown_period=0))
        outcomes = iter([SessionOutcome.FAILURE, SessionOutcome.SUCCESS])
        env['executor'].execute.side_effect = \
            lambda severity, records: session_for(severity, next(outcomes))
        env['scorer'].score_all.return_value = records_for([40] + [72] * 10)

        await scheduler.run_tick()
        assert env['store'].load().consecutive_failures == 1
        await scheduler.run_tick()

        assert env['store'].load().consecutive_failures == 0
        assert env['store'].load().statistics.successful_recoveries == 1

    @pytest.mark.asyncio
    async def test_failure_notification(self, env):
        """测试恢复失败时发送失败通知"""
        env['executor'].execute.side_effect = \
            lambda severity, records: session_for(severity, SessionOutcome.FAILURE)
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)

        await env['scheduler'].run_tick()

        await env['scheduler'].integrator.drain()
        messages = [call.args[0] for call in env['dispatcher'].dispatch.await_args_list]
        failed = [m for m in messages if m.event == NotificationEvent.RECOVERY_FAILED]
        assert failed[0].message == "Automated recovery failed for strategy: full_recovery"
        assert failed[0].severity == 'error'

    @pytest.mark.asyncio
    async def test_dry_run_does_not_mutate(self, env):
        """测试试运行不修改状态、不恢复、不通知"""
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)
        state_file = env['tmp_path'] / 'state.json'

        report = await env['scheduler'].test_once()

        assert report.dry_run is True
        assert report.decision == TickDecision.DRY_RUN
        assert report.strategy == RecoveryStrategy.FULL_RECOVERY
        env['executor'].execute.assert_not_called()
        env['dispatcher'].dispatch.assert_not_called()
        assert not state_file.exists()
        assert not (env['tmp_path'] / 'history.json').exists()

    @pytest.mark.asyncio
    async def test_dry_run_keeps_corrupt_state_file(self, env):
        """测试试运行不隔离损坏的状态文件"""
        state_file = env['tmp_path'] / 'state.json'
        state_file.write_text('{broken', encoding='utf-8')

        report = await env['scheduler'].test_once()

        assert report.decision == TickDecision.HEALTHY
        assert state_file.read_text(encoding='utf-8') == '{broken'

    @pytest.mark.asyncio
    async def test_corrupt_state_is_recovered(self, env):
        """测试正常检查时重建损坏的状态"""
        state_file = env['tmp_path'] / 'state.json'
        state_file.write_text('{broken', encoding='utf-8')

        await env['scheduler'].run_tick()

        data = json.loads(state_file.read_text(encoding='utf-8'))
        assert data['statistics']['totalChecks'] == 1
        assert any(p.name.startswith('state.json.corrupt-') for p in env['tmp_path'].iterdir())

    @pytest.mark.asyncio
    async def test_tick_persists_history(self, env):
        """测试检查结果写入健康历史"""
        await env['scheduler'].run_tick()

        data = json.loads((env['tmp_path'] / 'history.json').read_text(encoding='utf-8'))
        assert set(data) == set(MODULES)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, env):
        """测试启动监控循环并停止"""
        scheduler = env['scheduler']
        pid_path = env['tmp_path'] / 'run' / 'recovery.pid'

        task = asyncio.create_task(scheduler.start())
        for _ in range(200):
            if env['scorer'].score_all.await_count >= 1:
                break
            await asyncio.sleep(0.01)

        assert scheduler.state == SchedulerState.RUNNING
        assert pid_path.read_text(encoding='utf-8') == str(os.getpid())
        assert env['store'].load().is_active is True

        await scheduler.stop()
        await asyncio.wait_for(task, timeout=5)

        assert scheduler.state == SchedulerState.STOPPED
        assert not pid_path.exists()
        state = env['store'].load()
        assert state.is_active is False
        assert state.monitoring_started == START
        assert state.statistics.total_checks == 1

    @pytest.mark.asyncio
    async def test_write_retry_waits_off_event_loop(self, env):
        """测试状态写入失败重试时的等待不在事件循环线程中执行"""
        sleep_threads = []
        failures = iter([OSError('resource busy')])
        real_replace = os.replace

        def flaky_replace(src, dst):
            for error in failures:
                raise error
            real_replace(src, dst)

        with patch('module_recovery.utils.fileio.os.replace', side_effect=flaky_replace), \
                patch('module_recovery.utils.error_handler.time.sleep',
                      side_effect=lambda delay: sleep_threads.append(threading.get_ident())):
            await env['scheduler'].run_tick()

        assert len(sleep_threads) == 1
        assert threading.get_ident() not in sleep_threads
        assert env['store'].load().statistics.total_checks == 1

    @pytest.mark.asyncio
    async def test_slow_alerter_does_not_block_tick(self, env):
        """测试告警渠道挂起时检查仍按时完成"""
        release = asyncio.Event()

        async def hung_dispatch(message):
            await release.wait()
            return []

        env['dispatcher'].dispatch.side_effect = hung_dispatch
        env['scorer'].score_all.return_value = records_for([20] * 11)

        report = await asyncio.wait_for(env['scheduler'].run_tick(), timeout=2)

        assert report.decision == TickDecision.RECOVER
        assert env['executor'].execute.await_count == 1
        assert env['store'].load().statistics.total_checks == 1
        # 11 个模块变化加上恢复开始和恢复结果
        assert env['scheduler'].integrator.pending_deliveries == 13

        release.set()
        assert await env['scheduler'].integrator.drain(timeout=5) == 0

    @pytest.mark.asyncio
    async def test_stop_drains_pending_notifications(self, env):
        """测试停止时等待并取消未完成的通知投递"""
        scheduler = env['scheduler']
        integrator = scheduler.integrator

        async def hung_dispatch(message):
            await asyncio.Event().wait()

        env['dispatcher'].dispatch.side_effect = hung_dispatch
        env['scorer'].score_all.return_value = records_for([0] * 2 + [95] * 9)

        with patch('module_recovery.services.monitor_scheduler.DEFAULT_DELIVER_TIMEOUT', 0.1):
            task = asyncio.create_task(scheduler.start())
            for _ in range(200):
                if integrator.pending_deliveries:
                    break
                await asyncio.sleep(0.01)
            assert integrator.pending_deliveries > 0

            await scheduler.stop()
            await asyncio.wait_for(task, timeout=5)

        assert integrator.pending_deliveries == 0
        assert integrator.delivery_stats['cancelled'] > 0
        assert scheduler.state == SchedulerState.STOPPED

    @pytest.mark.asyncio
    async def test_tick_exception_does_not_stop_loop(self, env):
        """测试单次检查异常不会终止监控循环"""
        scheduler = env['scheduler']
        scheduler.update_thresholds(TriggerThresholds(monitoring_interval=0))
        env['scorer'].score_all.side_effect = RuntimeError('scorer crashed')

        task = asyncio.create_task(scheduler.start())
        for _ in range(200):
            if env['scorer'].score_all.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        scheduler.request_stop()
        await asyncio.wait_for(task, timeout=5)

        assert env['scorer'].score_all.await_count >= 2
        assert scheduler.state == SchedulerState.STOPPED

    @pytest.mark.asyncio
    async def test_start_refused_when_daemon_running(self, env):
        """测试已有守护进程运行时拒绝启动"""
        PidFile(str(env['tmp_path'] / 'run' / 'recovery.pid')).write(os.getppid())

        with pytest.raises(DaemonAlreadyRunningError):
            await env['scheduler'].start()

        assert env['scheduler'].state == SchedulerState.STOPPED
        env['scorer'].score_all.assert_not_called()

    def test_reset_refused_when_daemon_running(self, env):
        """测试守护进程运行时拒绝重置"""
        PidFile(str(env['tmp_path'] / 'run' / 'recovery.pid')).write(os.getppid())

        with pytest.raises(DaemonRunningError):
            env['scheduler'].reset()

    @pytest.mark.asyncio
    async def test_reset_then_status_is_default(self, env):
        """测试重置后状态为默认值"""
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)
        await env['scheduler'].run_tick()

        env['scheduler'].reset()
        status = env['scheduler'].status()

        assert status['running'] is False
        assert status['pid'] is None
        assert status['triggerState'] == {
            'isActive': False,
            'lastCheck': None,
            'lastRecoveryAttempt': None,
            'consecutiveFailures': 0,
            'recoveryAttempts': 0,
            'currentSeverity': 'none',
            'monitoringStarted': None
        }
        assert status['statistics'] == {'totalChecks': 0, 'triggeredRecoveries': 0,
                                        'successfulRecoveries': 0, 'failedRecoveries': 0}
        assert status['thresholds'] == TriggerThresholds().to_dict()
        assert status['cooldown_remaining'] == 0

    @pytest.mark.asyncio
    async def test_status_reports_cooldown_and_health(self, env):
        """测试状态包含冷却剩余时间和模块健康"""
        env['scorer'].score_all.return_value = records_for([20] * 4 + [95] * 7)
        await env['scheduler'].run_tick()
        env['clock'].advance(300)

        status = env['scheduler'].status()

        assert status['cooldown_remaining'] == 1500
        assert status['health']['workspace_health']['criticalModules'] == 4
        assert status['statistics']['triggeredRecoveries'] == 1

    def test_status_with_corrupt_state(self, env):
        """测试状态文件损坏时 status 只报告不修改"""
        state_file = env['tmp_path'] / 'state.json'
        state_file.write_text('[]', encoding='utf-8')

        status = env['scheduler'].status()

        assert 'STATE_CORRUPTION' in status['state_error']
        assert state_file.read_text(encoding='utf-8') == '[]'

    def test_on_config_changed(self, env):
        """测试配置变更时更新阈值和告警渠道"""
        scheduler = env['scheduler']
        old = {'thresholds': {}, 'alerts': []}
        new = {'thresholds': {'health_threshold': 80, 'cooldown_period': 600},
               'alerts': [{'name': 'files', 'type': 'file',
                           'directory': str(env['tmp_path'] / 'alerts')}]}

        scheduler.on_config_changed(old, new)

        assert scheduler.thresholds.health_threshold == 80
        assert scheduler.classifier.thresholds.cooldown_period == 600
        env['dispatcher'].load_alerters.assert_called_once_with(new['alerts'])

    def sampled_scheduler(self, env, **thresholds):
        sampler = PerformanceSampler(str(env['tmp_path']), thresholds=thresholds,
                                     metrics_file=str(env['tmp_path'] / 'performance.json'))
        sampler.collect_system_metrics = Mock(return_value=SystemMetrics(
            START, 12.0, 45.0, 2048.0, 4096.0, 97.0, 0.4))
        old = env['scheduler']
        return MonitorScheduler(
            env['scorer'], MODULES, env['store'], env['executor'], old.integrator,
            thresholds=TriggerThresholds(), history=old.history, sampler=sampler,
            clock=env['clock']
        )

    @pytest.mark.asyncio
    async def test_tick_samples_performance(self, env):
        """测试每次检查后采样性能并对超限指标发送通知"""
        scheduler = self.sampled_scheduler(env, disk_threshold=95)

        await scheduler.run_tick()
        await scheduler.run_tick()

        assert (await self.events(env)).count(NotificationEvent.PERFORMANCE) == 1
        saved = json.loads((env['tmp_path'] / 'performance.json').read_text(encoding='utf-8'))
        assert saved['active_breaches'] == ['system:disk']
        status = scheduler.status()
        assert status['performance']['modules']['auth']['samples'] == 2
        assert status['performance']['system']['disk_percent'] == 97.0

    @pytest.mark.asyncio
    async def test_dry_run_does_not_sample(self, env):
        """测试试运行不采样性能"""
        scheduler = self.sampled_scheduler(env)

        await scheduler.run_tick(dry_run=True)

        assert not scheduler.sampler.has_samples
        assert scheduler.status()['performance'] is None

    def test_performance_thresholds_follow_config(self, env):
        """测试配置变更时更新性能告警阈值"""
        scheduler = self.sampled_scheduler(env)

        scheduler.on_config_changed({}, {'performance': {'disk_threshold': 99}})

        assert scheduler.sampler.thresholds['disk_threshold'] == 99

    def test_status_without_sampler(self, env):
        """测试未启用性能采样时状态中不含性能报告"""
        assert env['scheduler'].status()['performance'] is None
