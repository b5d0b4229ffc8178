"""配置验证器测试"""

import copy
import pytest

from module_recovery.services.config_manager import DEFAULT_CONFIG
from module_recovery.utils.config_validator import ConfigValidator
from module_recovery.utils.exceptions import ConfigError


class TestConfigValidator:
    """配置验证器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.config = copy.deepcopy(DEFAULT_CONFIG)

    def test_default_config_is_valid(self):
        """测试默认配置有效"""
        ConfigValidator.validate(self.config)

    def test_root_must_be_dict(self):
        """测试根节点类型"""
        with pytest.raises(ConfigError):
            ConfigValidator.validate([])

    @pytest.mark.parametrize("key,value", [
        ('log_level', 'VERBOSE'),
        ('max_concurrent_checks', 0),
        ('state_file', 42),
    ])
    def test_invalid_global(self, key, value):
        """测试无效的全局配置"""
        self.config['global'][key] = value
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    def test_log_level_case_insensitive(self):
        """测试日志级别不区分大小写"""
        self.config['global']['log_level'] = 'debug'
        ConfigValidator.validate(self.config)

    @pytest.mark.parametrize("modules", [
        [],
        'auth',
        ['auth', ''],
        ['auth', 'auth'],
        ['auth', 3],
    ])
    def test_invalid_modules(self, modules):
        """测试无效的模块列表"""
        self.config['workspace']['modules'] = modules
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    @pytest.mark.parametrize("probe", [
        {'type': 'ssh'},
        {'type': 'command', 'timeout': 0},
        {'type': 'command', 'build_command': 'npm run build'},
        {'type': 'command', 'type_check_command': []},
        'command',
    ])
    def test_invalid_probe(self, probe):
        """测试无效的探测配置"""
        self.config['workspace']['probe'] = probe
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    @pytest.mark.parametrize("key,value", [
        ('health_threshold', 101),
        ('health_threshold', -1),
        ('health_threshold', 70.5),
        ('health_threshold', True),
        ('critical_module_count', 0),
        ('monitoring_interval', 0),
        ('monitoring_interval', '60'),
        ('cooldown_period', -1),
    ])
    def test_invalid_thresholds(self, key, value):
        """测试无效的阈值"""
        self.config['thresholds'][key] = value
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    def test_zero_cooldown_allowed(self):
        """测试冷却期可以为0"""
        self.config['thresholds']['cooldown_period'] = 0
        ConfigValidator.validate(self.config)

    @pytest.mark.parametrize("key,value", [
        ('type', 'ansible'),
        ('timeout', -5),
        ('full_recovery_command', [1]),
        ('validate_command', 'validate.sh'),
    ])
    def test_invalid_recovery(self, key, value):
        """测试无效的恢复配置"""
        self.config['recovery'][key] = value
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    @pytest.mark.parametrize("alert", [
        {'type': 'http', 'url': 'https://x'},
        {'name': 'a'},
        {'name': 'a', 'type': 'sms'},
        {'name': 'a', 'type': 'http'},
        {'name': 'a', 'type': 'email', 'smtp_server': 'smtp.example.com'},
        {'name': 'a', 'type': 'file'},
        {'name': 'a', 'type': 'file', 'directory': '/tmp', 'timeout': 0},
        {'name': 'a', 'type': 'file', 'directory': '/tmp', 'enabled': 'no'},
    ])
    def test_invalid_alert(self, alert):
        """测试无效的告警配置"""
        self.config['alerts'] = [alert]
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    def test_duplicate_alert_names(self):
        """测试告警名称重复"""
        alert = {'name': 'a', 'type': 'file', 'directory': '/tmp'}
        self.config['alerts'] = [alert, dict(alert)]
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    def test_alerts_must_be_list(self):
        """测试告警配置类型"""
        self.config['alerts'] = {'name': 'a'}
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    @pytest.mark.parametrize("key,value", [
        ('enabled', 'yes'),
        ('history_size', 0),
        ('history_size', 2.5),
        ('duration_threshold', -1),
        ('memory_threshold', 120),
        ('disk_threshold', '80'),
        ('cpu_threshold', 0),
    ])
    def test_invalid_performance(self, key, value):
        """测试无效的性能采样配置"""
        self.config['performance'][key] = value
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)

    def test_performance_threshold_can_be_disabled(self):
        """测试性能阈值为空时不检查该项"""
        self.config['performance']['memory_threshold'] = None
        ConfigValidator.validate(self.config)

    def test_invalid_test_command(self):
        """测试无效的模块测试命令"""
        self.config['workspace']['probe']['test_command'] = 'npm test'
        with pytest.raises(ConfigError):
            ConfigValidator.validate(self.config)
