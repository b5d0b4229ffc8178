"""工具模块"""

from .exceptions import (
    RecoveryOrchestratorError, ConfigError, ProbeError, AlertError, StateCorruptionError
)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'RecoveryOrchestratorError', 'ConfigError', 'ProbeError', 'AlertError',
    'StateCorruptionError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
