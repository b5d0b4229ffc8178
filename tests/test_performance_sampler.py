"""性能采样测试"""

import json

import psutil
import pytest
from unittest.mock import AsyncMock, patch

from module_recovery.models.health import ModuleHealthRecord, ModuleStatus
from module_recovery.services.performance_sampler import (
    PerformanceSampler, SystemMetrics, ThresholdBreach, SYSTEM_COMPONENT
)
from module_recovery.utils.timestamps import utc_now


def record(module_id, duration, **timings):
    return ModuleHealthRecord(module_id, 100, ModuleStatus.HEALTHY,
                              duration=duration, timings=timings)


def metrics(cpu=10.0, memory=40.0, disk=50.0):
    return SystemMetrics(timestamp=utc_now(), cpu_percent=cpu, memory_percent=memory,
                         memory_used_mb=2048.0, memory_available_mb=4096.0,
                         disk_percent=disk, load_average=0.5)


class TestPerformanceSampler:
    """性能采样器测试类"""

    def setup_method(self):
        self.sampler = PerformanceSampler('.', history_size=3)
        self.callback = AsyncMock()
        self.sampler.set_threshold_callback(self.callback)

    def test_collect_system_metrics_missing_root(self, tmp_path):
        """测试工作区目录不存在时统计最近的上级目录"""
        sampler = PerformanceSampler(str(tmp_path / 'missing' / 'workspace'))

        collected = sampler.collect_system_metrics()

        assert 0 <= collected.disk_percent <= 100
        assert collected.memory_available_mb > 0
        assert set(collected.to_dict()) >= {'timestamp', 'cpu_percent', 'load_average'}

    @pytest.mark.asyncio
    async def test_module_timings_reported(self):
        """测试记录模块耗时并找出最慢的模块"""
        with patch.object(self.sampler, 'collect_system_metrics', return_value=metrics()):
            await self.sampler.sample([record('auth', 1.0, type_check=0.8),
                                       record('admin', 4.0, type_check=3.0, build=0.9)])
            await self.sampler.sample([record('auth', 3.0, type_check=2.8)])

        report = self.sampler.report()

        assert report['slowest_module'] == 'admin'
        assert report['modules']['auth']['samples'] == 2
        assert report['modules']['auth']['avg_probe'] == 2.0
        assert report['modules']['auth']['max_probe'] == 3.0
        assert report['modules']['admin']['latest']['build'] == 0.9
        assert report['system']['memory_percent'] == 40.0
        assert report['average']['sample_count'] == 2
        assert report['active_breaches'] == []

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        """测试环形缓冲只保留最近的采样"""
        with patch.object(self.sampler, 'collect_system_metrics', return_value=metrics()):
            for duration in range(1, 6):
                await self.sampler.sample([record('auth', float(duration))])

        assert len(self.sampler.system_history) == 3
        assert [t.probe for t in self.sampler.module_history['auth']] == [3.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_slow_module_notified_once(self):
        """测试耗时超限只在首次超限时通知，恢复后再次超限重新通知"""
        self.sampler.update_thresholds({'duration_threshold': 10})

        with patch.object(self.sampler, 'collect_system_metrics', return_value=metrics()):
            first = await self.sampler.sample([record('auth', 12.0, build=11.0)])
            again = await self.sampler.sample([record('auth', 15.0, build=14.0)])
            assert self.sampler.report()['active_breaches'] == ['auth:build', 'auth:probe']
            await self.sampler.sample([record('auth', 2.0)])
            after = await self.sampler.sample([record('auth', 20.0)])

        assert [(b.component, b.metric) for b in first] == [('auth', 'probe'), ('auth', 'build')]
        assert again == []
        assert [b.metric for b in after] == ['probe']
        assert self.callback.await_count == 3

    @pytest.mark.asyncio
    async def test_system_memory_breach(self):
        """测试系统内存使用率超限"""
        with patch.object(self.sampler, 'collect_system_metrics',
                          return_value=metrics(memory=93.5)):
            breaches = await self.sampler.sample([])

        assert breaches == [ThresholdBreach(SYSTEM_COMPONENT, 'memory', 93.5, 80)]
        self.callback.assert_awaited_once_with(breaches[0])
        assert breaches[0].message == \
            "Performance alert: system memory = 93.5% (threshold: 80%)"

    @pytest.mark.asyncio
    async def test_disabled_threshold_not_checked(self):
        """测试阈值为 None 时不检查该指标"""
        with patch.object(self.sampler, 'collect_system_metrics',
                          return_value=metrics(cpu=99.0)):
            assert await self.sampler.sample([]) == []

        self.sampler.update_thresholds({'cpu_threshold': 90, 'memory_threshold': None})
        with patch.object(self.sampler, 'collect_system_metrics',
                          return_value=metrics(cpu=99.0, memory=95.0)):
            breaches = await self.sampler.sample([])

        assert [b.metric for b in breaches] == ['cpu']

    @pytest.mark.asyncio
    async def test_collect_failure_tolerated(self):
        """测试采集系统指标失败时仍记录模块耗时"""
        with patch.object(self.sampler, 'collect_system_metrics',
                          side_effect=psutil.AccessDenied(1)):
            breaches = await self.sampler.sample([record('auth', 1.0)])

        assert breaches == []
        assert len(self.sampler.system_history) == 0
        assert self.sampler.has_samples

    def test_empty_report(self):
        """测试没有采样时的报告"""
        report = self.sampler.report()

        assert not self.sampler.has_samples
        assert report['system'] is None
        assert report['average'] is None
        assert report['peak'] is None
        assert report['slowest_module'] is None
        assert report['thresholds']['duration_threshold'] == 300

    @pytest.mark.asyncio
    async def test_save_and_read_report(self, tmp_path):
        """测试保存报告并由其他实例读取"""
        path = tmp_path / 'logs' / 'performance.json'
        sampler = PerformanceSampler('.', metrics_file=str(path))
        assert sampler.saved_report() is None

        with patch.object(sampler, 'collect_system_metrics', return_value=metrics()):
            await sampler.sample([record('auth', 1.5)])
        sampler.save()

        saved = PerformanceSampler('.', metrics_file=str(path)).saved_report()
        assert saved['slowest_module'] == 'auth'
        assert saved['peak']['peak_disk_percent'] == 50.0

    def test_invalid_saved_report(self, tmp_path):
        """测试报告文件内容无效时返回 None"""
        path = tmp_path / 'performance.json'
        path.write_text('{broken', encoding='utf-8')

        assert PerformanceSampler('.', metrics_file=str(path)).saved_report() is None

    def test_save_without_file(self, tmp_path):
        """测试未配置报告文件时不写入"""
        self.sampler.save()

        assert self.sampler.saved_report() is None

    def test_from_config(self):
        """测试根据配置创建采样器"""
        assert PerformanceSampler.from_config({'enabled': False}) is None

        sampler = PerformanceSampler.from_config(
            {'history_size': 10, 'memory_threshold': 95, 'cpu_threshold': 70}, '/repo')

        assert sampler.history_size == 10
        assert sampler.workspace_root == '/repo'
        assert sampler.thresholds == {'duration_threshold': 300, 'memory_threshold': 95,
                                      'disk_threshold': 80, 'cpu_threshold': 70}

    def test_update_thresholds_ignores_unknown_keys(self):
        """测试更新阈值时忽略无关配置项"""
        self.sampler.update_thresholds({'enabled': True, 'history_size': 5,
                                        'disk_threshold': 90})

        assert set(self.sampler.thresholds) == {'duration_threshold', 'memory_threshold',
                                                'disk_threshold', 'cpu_threshold'}
        assert self.sampler.thresholds['disk_threshold'] == 90

    def test_report_is_json_serializable(self):
        """测试报告可以序列化为JSON"""
        self.sampler.system_history.append(metrics())

        assert json.loads(json.dumps(self.sampler.report()))['system']['cpu_percent'] == 10.0
