"""配置验证工具"""

from typing import Dict, Any, List

from .exceptions import ConfigError

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
SUPPORTED_ALERT_TYPES = ['http', 'email', 'file']
SUPPORTED_PROBE_TYPES = ['command']
SUPPORTED_RUNNER_TYPES = ['command']


def _require_positive_int(section: str, config: Dict[str, Any], key: str,
                          allow_zero: bool = False) -> None:
    value = config.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{section}.{key} 必须是整数")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{section}.{key} 必须是{'非负' if allow_zero else '正'}整数")


def _require_positive_number(section: str, config: Dict[str, Any], key: str) -> None:
    value = config.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{section}.{key} 必须是正数")


def _require_command(section: str, config: Dict[str, Any], key: str) -> None:
    value = config.get(key)
    if value is None:
        return
    if not isinstance(value, list) or not value or \
            not all(isinstance(part, str) for part in value):
        raise ConfigError(f"{section}.{key} 必须是非空的字符串列表")


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        log_level = global_config.get('log_level')
        if log_level is not None and str(log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

        _require_positive_int('global', global_config, 'max_concurrent_checks')

        for key in ('state_file', 'history_file', 'audit_file', 'pid_file', 'log_file',
                    'performance_file'):
            value = global_config.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"global.{key} 必须是字符串路径")

    @staticmethod
    def validate_workspace_config(workspace_config: Dict[str, Any]) -> None:
        """
        验证工作区配置，模块列表不能为空且不能重复

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(workspace_config, dict):
            raise ConfigError("workspace配置必须是字典类型")

        modules = workspace_config.get('modules')
        if not isinstance(modules, list) or not modules:
            raise ConfigError("workspace.modules 必须是非空列表")
        for module_id in modules:
            if not isinstance(module_id, str) or not module_id.strip():
                raise ConfigError(f"模块名称无效: {module_id!r}")
        duplicates = sorted({m for m in modules if modules.count(m) > 1})
        if duplicates:
            raise ConfigError(f"模块名称重复: {', '.join(duplicates)}")

        lock_files = workspace_config.get('lock_files')
        if lock_files is not None and not isinstance(lock_files, list):
            raise ConfigError("workspace.lock_files 必须是列表类型")

        _require_positive_int('workspace', workspace_config, 'dependency_size_limit_mb')

        probe = workspace_config.get('probe', {})
        if not isinstance(probe, dict):
            raise ConfigError("workspace.probe 必须是字典类型")
        probe_type = probe.get('type', 'command')
        if probe_type not in SUPPORTED_PROBE_TYPES:
            raise ConfigError(
                f"探测器类型 '{probe_type}' 不受支持。支持的类型: {SUPPORTED_PROBE_TYPES}")
        _require_positive_number('workspace.probe', probe, 'timeout')
        _require_positive_number('workspace.probe', probe, 'module_timeout')
        _require_command('workspace.probe', probe, 'build_command')
        _require_command('workspace.probe', probe, 'type_check_command')
        _require_command('workspace.probe', probe, 'test_command')
        for key in ('check_build', 'measure_tests'):
            if not isinstance(probe.get(key, False), bool):
                raise ConfigError(f"workspace.probe.{key} 必须是布尔值")

    @staticmethod
    def validate_thresholds_config(thresholds: Dict[str, Any]) -> None:
        """
        验证触发阈值

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(thresholds, dict):
            raise ConfigError("thresholds配置必须是字典类型")

        health_threshold = thresholds.get('health_threshold')
        if health_threshold is not None:
            if isinstance(health_threshold, bool) or not isinstance(health_threshold, int) \
                    or not 0 <= health_threshold <= 100:
                raise ConfigError("thresholds.health_threshold 必须是0-100之间的整数")

        _require_positive_int('thresholds', thresholds, 'critical_module_count')
        _require_positive_int('thresholds', thresholds, 'monitoring_interval')
        _require_positive_int('thresholds', thresholds, 'cooldown_period', allow_zero=True)

    @staticmethod
    def validate_recovery_config(recovery_config: Dict[str, Any]) -> None:
        """
        验证恢复策略执行配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(recovery_config, dict):
            raise ConfigError("recovery配置必须是字典类型")

        runner_type = recovery_config.get('type', 'command')
        if runner_type not in SUPPORTED_RUNNER_TYPES:
            raise ConfigError(
                f"恢复执行器类型 '{runner_type}' 不受支持。支持的类型: {SUPPORTED_RUNNER_TYPES}")

        _require_positive_number('recovery', recovery_config, 'timeout')
        for key in ('validate_command', 'rebuild_command', 'full_recovery_command'):
            _require_command('recovery', recovery_config, key)

    @staticmethod
    def validate_performance_config(performance_config: Dict[str, Any]) -> None:
        """
        验证性能采样配置，阈值为 None 时不检查该项

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(performance_config, dict):
            raise ConfigError("performance配置必须是字典类型")
        if not isinstance(performance_config.get('enabled', True), bool):
            raise ConfigError("performance.enabled 必须是布尔值")

        _require_positive_int('performance', performance_config, 'history_size')
        _require_positive_number('performance', performance_config, 'duration_threshold')
        for key in ('memory_threshold', 'disk_threshold', 'cpu_threshold'):
            _require_positive_number('performance', performance_config, key)
            value = performance_config.get(key)
            if value is not None and value > 100:
                raise ConfigError(f"performance.{key} 必须是0-100之间的百分比")

    @staticmethod
    def validate_alert_config(alert_config: Dict[str, Any]) -> None:
        """
        验证单个告警渠道配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(alert_config, dict):
            raise ConfigError("告警配置必须是字典类型")

        for field in ('name', 'type'):
            if field not in alert_config:
                raise ConfigError(f"告警配置缺少必需的配置项: {field}")

        alert_type = alert_config['type']
        if alert_type not in SUPPORTED_ALERT_TYPES:
            raise ConfigError(
                f"告警 '{alert_config['name']}' 的类型 '{alert_type}' 不受支持。"
                f"支持的类型: {SUPPORTED_ALERT_TYPES}")

        required: List[str] = {
            'http': ['url'],
            'email': ['smtp_server', 'to_emails'],
            'file': ['directory']
        }[alert_type]
        for field in required:
            if not alert_config.get(field):
                raise ConfigError(f"告警 '{alert_config['name']}' 缺少必需的配置项: {field}")

        if not isinstance(alert_config.get('enabled', True), bool):
            raise ConfigError(f"告警 '{alert_config['name']}' 的 enabled 必须是布尔值")
        _require_positive_number(f"alerts.{alert_config['name']}", alert_config, 'timeout')

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        验证完整配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型")

        cls.validate_global_config(config.get('global', {}))
        cls.validate_workspace_config(config.get('workspace', {}))
        cls.validate_thresholds_config(config.get('thresholds', {}))
        cls.validate_recovery_config(config.get('recovery', {}))
        cls.validate_performance_config(config.get('performance', {}))

        alerts = config.get('alerts', [])
        if not isinstance(alerts, list):
            raise ConfigError("alerts配置必须是列表类型")
        names = set()
        for alert_config in alerts:
            cls.validate_alert_config(alert_config)
            if alert_config['name'] in names:
                raise ConfigError(f"告警名称重复: {alert_config['name']}")
            names.add(alert_config['name'])
