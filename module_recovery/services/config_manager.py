"""配置管理器"""

import copy
import os
from typing import Dict, Any, Optional, List

import yaml

from ..models.recovery import TriggerThresholds
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.config_validator import ConfigValidator
from ..utils.log_manager import get_logger

DEFAULT_MODULES = [
    'auth', 'i18n', 'processing', 'multimedia', 'analytics', 'premium',
    'public-profiles', 'recommendations', 'admin', 'workflow', 'payments'
]

DEFAULT_CONFIG: Dict[str, Any] = {
    'global': {
        'log_level': 'INFO',
        'log_file': None,
        'state_file': 'logs/automated-recovery-trigger.json',
        'history_file': 'logs/health-history.json',
        'audit_file': 'logs/recovery-audit.jsonl',
        'pid_file': 'logs/automated-recovery-trigger.pid',
        'performance_file': 'logs/performance-metrics.json',
        'max_concurrent_checks': 5
    },
    'workspace': {
        'root': '.',
        'modules_dir': 'packages',
        'modules': list(DEFAULT_MODULES),
        'manifest_file': 'package.json',
        'build_config_file': 'tsconfig.json',
        'source_dir': 'src',
        'output_dir': 'dist',
        'dependencies_dir': 'node_modules',
        'lock_files': ['package-lock.json', 'yarn.lock'],
        'dependency_size_limit_mb': 500,
        'probe': {
            'type': 'command',
            'timeout': 120,
            'module_timeout': 300,
            'build_command': ['npm', 'run', 'build'],
            'type_check_command': ['npx', 'tsc', '--noEmit', '--skipLibCheck'],
            'test_command': ['npm', 'test'],
            'measure_tests': False
        }
    },
    'thresholds': {
        'health_threshold': 70,
        'critical_module_count': 3,
        'monitoring_interval': 60,
        'cooldown_period': 1800
    },
    'recovery': {
        'type': 'command',
        'timeout': 1800,
        'validate_command': ['scripts/recovery/validate-dependencies.sh'],
        'rebuild_command': ['npm', 'run', 'build'],
        'full_recovery_command': ['scripts/recovery/build-recovery.sh'],
        'force_flag': '--force',
        'recovery_state_file': 'logs/recovery/recovery-state.json'
    },
    'performance': {
        'enabled': True,
        'history_size': 100,
        'duration_threshold': 300,
        'memory_threshold': 80,
        'disk_threshold': 80,
        'cpu_threshold': None
    },
    'alerts': []
}

# 没有配置邮件告警时，命令行启用的邮件通知通过本机邮件服务发送
CLI_EMAIL_ALERT: Dict[str, Any] = {
    'name': 'cli-email',
    'type': 'email',
    'smtp_server': 'localhost',
    'smtp_port': 25,
    'start_tls': False,
    'from_email': 'module-recovery@localhost.localdomain'
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _enable_email_alerts(alerts: List[Dict[str, Any]],
                         recipients: Optional[List[str]]) -> None:
    email_alerts = [alert for alert in alerts if alert.get('type') == 'email']
    if not email_alerts:
        if not recipients:
            raise ConfigError("启用邮件通知需要指定接收人或在配置文件中添加邮件告警")
        email_alerts = [copy.deepcopy(CLI_EMAIL_ALERT)]
        alerts.extend(email_alerts)
    for alert in email_alerts:
        alert['enabled'] = True
        if recipients:
            alert['to_emails'] = list(recipients)

class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、与默认值合并和验证"""

    def __init__(self, config_path: Optional[str] = None):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径，为空时只使用默认配置
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self.last_modified: Optional[float] = None
        self._overrides: Dict[str, Any] = {}
        self.logger = get_logger(__name__)

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件并与默认配置合并

        Returns:
            Dict[str, Any]: 合并后的配置

        Raises:
            ConfigError: 配置加载或验证失败
        """
        if not self.config_path:
            self.logger.info("未指定配置文件，使用默认配置")
            ConfigValidator.validate(self.config)
            return self.config

        self.logger.info(f"开始加载配置文件: {self.config_path}")
        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                raw_config = yaml.safe_load(file)
        except FileNotFoundError:
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(f"配置文件不存在: {self.config_path}",
                              ErrorCode.CONFIG_FILE_NOT_FOUND, config_path=self.config_path)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              config_path=self.config_path, cause=e)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)

        if raw_config is None:
            raw_config = {}
        if not isinstance(raw_config, dict):
            raise ConfigError("配置文件根节点必须是字典类型", config_path=self.config_path)

        config = _deep_merge(DEFAULT_CONFIG, raw_config)
        ConfigValidator.validate(config)

        old_config = self.config
        self.config = config
        self.last_modified = os.path.getmtime(self.config_path)
        self._log_config_changes(old_config, config)

        self.logger.info(
            f"配置验证成功，包含 {len(self.get_modules())} 个模块和 "
            f"{len(self.get_alerts_config())} 个告警渠道"
        )
        return self.config

    def reload_config(self) -> Dict[str, Any]:
        """重新加载配置文件"""
        self.logger.info("重新加载配置文件")
        self.load_config()
        if self._overrides:
            # 命令行覆盖项优先于配置文件
            self.apply_overrides(**self._overrides)
        return self.config

    def is_config_changed(self) -> bool:
        """检查配置文件修改时间是否晚于上次加载"""
        if not self.config_path:
            return False
        try:
            current_modified = os.path.getmtime(self.config_path)
        except OSError:
            return False
        return self.last_modified is None or current_modified > self.last_modified

    def apply_overrides(self, thresholds: Optional[Dict[str, Any]] = None,
                        webhooks: Optional[List[str]] = None,
                        alert_dir: Optional[str] = None,
                        email_recipients: Optional[List[str]] = None,
                        enable_email: bool = False) -> Dict[str, Any]:
        """
        应用命令行覆盖项

        Args:
            thresholds: 阈值覆盖，值为 None 的项被忽略
            webhooks: 追加的 HTTP 通知地址
            alert_dir: 追加的告警文件目录
            email_recipients: 邮件接收人，会覆盖已配置邮件告警的接收人并启用邮件通知
            enable_email: 启用配置文件中的邮件告警

        Returns:
            Dict[str, Any]: 覆盖后的配置

        Raises:
            ConfigError: 覆盖后的配置无效
        """
        config = copy.deepcopy(self.config)
        for key, value in (thresholds or {}).items():
            if value is not None:
                config['thresholds'][key] = value

        alerts = config.setdefault('alerts', [])
        for index, url in enumerate(webhooks or [], start=1):
            alerts.append({'name': f'cli-webhook-{index}', 'type': 'http', 'url': url})
        if alert_dir:
            alerts.append({'name': 'cli-alert-dir', 'type': 'file', 'directory': alert_dir})
        if email_recipients or enable_email:
            _enable_email_alerts(alerts, email_recipients)

        ConfigValidator.validate(config)
        self.config = config
        self._overrides = {'thresholds': thresholds, 'webhooks': webhooks,
                           'alert_dir': alert_dir, 'email_recipients': email_recipients,
                           'enable_email': enable_email}
        return self.config

    def get_global_config(self) -> Dict[str, Any]:
        return self.config.get('global', {})

    def get_workspace_config(self) -> Dict[str, Any]:
        return self.config.get('workspace', {})

    def get_modules(self) -> List[str]:
        return list(self.get_workspace_config().get('modules', []))

    def get_thresholds(self) -> TriggerThresholds:
        return TriggerThresholds.from_config(self.config.get('thresholds', {}))

    def get_recovery_config(self) -> Dict[str, Any]:
        return self.config.get('recovery', {})

    def get_alerts_config(self) -> List[Dict[str, Any]]:
        return self.config.get('alerts', [])

    def _log_config_changes(self, old_config: Dict[str, Any],
                            new_config: Dict[str, Any]) -> None:
        for section in ('global', 'workspace', 'thresholds', 'recovery'):
            if old_config.get(section) != new_config.get(section):
                self.logger.info(f"配置段已修改: {section}")
                self.logger.debug(f"{section} 新配置: {new_config.get(section)}")

        old_modules = set(old_config.get('workspace', {}).get('modules', []))
        new_modules = set(new_config.get('workspace', {}).get('modules', []))
        if new_modules - old_modules:
            self.logger.info(f"新增模块: {', '.join(sorted(new_modules - old_modules))}")
        if old_modules - new_modules:
            self.logger.info(f"移除模块: {', '.join(sorted(old_modules - new_modules))}")

        old_alerts = old_config.get('alerts', [])
        new_alerts = new_config.get('alerts', [])
        if len(old_alerts) != len(new_alerts):
            self.logger.info(f"告警配置数量变更: {len(old_alerts)} -> {len(new_alerts)}")
        elif old_alerts != new_alerts:
            self.logger.info("告警配置已修改")
