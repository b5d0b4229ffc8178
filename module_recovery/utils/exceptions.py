"""自定义异常类和错误代码"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001
    VALIDATION_ERROR = 1002

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002
    CONFIG_RELOAD_ERROR = 2003

    # 探测错误 (3000-3999)
    PROBE_INITIALIZATION_ERROR = 3000
    PROBE_EXECUTION_ERROR = 3001
    PROBE_TIMEOUT = 3002
    MODULE_NOT_FOUND = 3003

    # 告警错误 (4000-4999)
    ALERT_CONFIG_ERROR = 4000
    ALERT_SEND_ERROR = 4001
    ALERT_TEMPLATE_ERROR = 4002
    ALERT_NETWORK_ERROR = 4003

    # 恢复策略错误 (5000-5999)
    STRATEGY_EXECUTION_ERROR = 5000
    STRATEGY_TIMEOUT = 5001

    # 状态错误 (6000-6999)
    STATE_CORRUPTION = 6000
    STATE_PERSISTENCE_ERROR = 6001

    # 守护进程错误 (7000-7999)
    DAEMON_ALREADY_RUNNING = 7000
    DAEMON_NOT_RUNNING = 7001
    DAEMON_RUNNING = 7002


class RecoveryOrchestratorError(Exception):
    """恢复编排器基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': ''.join(traceback.format_exception(
                type(self.cause), self.cause, self.cause.__traceback__
            )) if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ConfigError(RecoveryOrchestratorError):
    """配置相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if config_path:
            details['config_path'] = config_path
        super().__init__(message, error_code, details, **kwargs)


class ProbeError(RecoveryOrchestratorError):
    """模块探测异常，只影响该模块的评分"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PROBE_EXECUTION_ERROR,
        module_id: Optional[str] = None,
        probe_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if module_id:
            details['module_id'] = module_id
        if probe_name:
            details['probe_name'] = probe_name
        super().__init__(message, error_code, details, **kwargs)


class AlertError(RecoveryOrchestratorError):
    """告警相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.ALERT_SEND_ERROR,
        alert_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if alert_name:
            details['alert_name'] = alert_name
        super().__init__(message, error_code, details, **kwargs)


class AlertConfigError(AlertError):
    """告警配置异常"""

    def __init__(self, message: str, alert_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.ALERT_CONFIG_ERROR,
            alert_name=alert_name,
            recoverable=False,
            **kwargs
        )


class AlertSendError(AlertError):
    """告警发送异常"""

    def __init__(self, message: str, alert_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.ALERT_SEND_ERROR,
            alert_name=alert_name,
            recoverable=True,
            **kwargs
        )


class StrategyExecutionError(RecoveryOrchestratorError):
    """恢复策略执行失败"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STRATEGY_EXECUTION_ERROR,
        strategy: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if strategy:
            details['strategy'] = strategy
        super().__init__(message, error_code, details, **kwargs)


class StateCorruptionError(RecoveryOrchestratorError):
    """持久化状态无法读取或格式错误"""

    def __init__(self, message: str, state_file: Optional[str] = None, **kwargs):
        details = kwargs.pop('details', None) or {}
        if state_file:
            details['state_file'] = state_file
        super().__init__(message, ErrorCode.STATE_CORRUPTION, details, **kwargs)


class DaemonAlreadyRunningError(RecoveryOrchestratorError):
    """守护进程已在运行时再次启动"""

    def __init__(self, message: str, pid: Optional[int] = None, **kwargs):
        details = kwargs.pop('details', None) or {}
        if pid:
            details['pid'] = pid
        super().__init__(message, ErrorCode.DAEMON_ALREADY_RUNNING, details,
                         recoverable=False, **kwargs)


class DaemonNotRunningError(RecoveryOrchestratorError):
    """守护进程未运行"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.DAEMON_NOT_RUNNING, **kwargs)


class DaemonRunningError(RecoveryOrchestratorError):
    """需要守护进程停止才能执行的操作"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.DAEMON_RUNNING, recoverable=False, **kwargs)
