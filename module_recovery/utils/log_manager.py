"""
日志管理器模块

所有组件通过 get_logger 获取日志记录器，控制台输出始终开启，
配置 log_file 后追加按大小轮转的文件输出。
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional, Dict, Any, List
from enum import Enum


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def from_name(cls, name: str) -> 'LogLevel':
        """
        按名称解析日志级别

        Raises:
            ValueError: 无效的日志级别
        """
        key = str(name).upper()
        if key not in cls.__members__:
            raise ValueError(f"无效的日志级别: {name}")
        return cls[key]


class LogManager:
    """
    日志管理器（单例）

    重新配置时会重建所有已创建日志记录器的处理器，
    因此模块导入时获取的记录器也会跟随配置变化。
    """

    _instance: Optional['LogManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LogManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._loggers: Dict[str, logging.Logger] = {}
        self._file_format = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s'
        )
        self._console_format = '%(asctime)s - %(levelname)s - %(message)s'
        self._date_format = '%Y-%m-%d %H:%M:%S'

        self._log_level = LogLevel.INFO
        self._log_file: Optional[str] = None
        self._max_file_size = 10 * 1024 * 1024  # 10MB
        self._backup_count = 5
        self._enable_console = True

        self._initialized = True

    @property
    def level(self) -> LogLevel:
        return self._log_level

    @property
    def log_file(self) -> Optional[str]:
        return self._log_file

    def configure(self, config: Dict[str, Any]) -> None:
        """
        配置日志管理器

        Args:
            config: 日志配置字典，可选键：
                - log_level: 日志级别名称
                - log_file: 日志文件路径，为 None 时关闭文件输出
                - max_file_size: 单个日志文件最大字节数
                - backup_count: 轮转备份数量
                - enable_console: 是否输出到控制台

        Raises:
            ValueError: 日志级别无效
        """
        if config.get('log_level') is not None:
            self._log_level = LogLevel.from_name(config['log_level'])
        if 'log_file' in config:
            self._log_file = config['log_file'] or None
        if 'max_file_size' in config:
            self._max_file_size = int(config['max_file_size'])
        if 'backup_count' in config:
            self._backup_count = int(config['backup_count'])
        if 'enable_console' in config:
            self._enable_console = bool(config['enable_console'])

        for logger in self._loggers.values():
            self._apply_handlers(logger)

    def get_logger(self, name: str) -> logging.Logger:
        """
        获取指定名称的日志记录器

        Args:
            name: 日志记录器名称

        Returns:
            logging.Logger: 配置好的日志记录器
        """
        logger = self._loggers.get(name)
        if logger is None:
            logger = logging.getLogger(name)
            logger.propagate = False
            self._apply_handlers(logger)
            self._loggers[name] = logger
        return logger

    def set_level(self, level: LogLevel) -> None:
        """设置全局日志级别并应用到已有记录器"""
        self._log_level = level
        for logger in self._loggers.values():
            logger.setLevel(level.value)
            for handler in logger.handlers:
                handler.setLevel(level.value)

    def _build_handlers(self) -> List[logging.Handler]:
        handlers: List[logging.Handler] = []

        if self._enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(
                logging.Formatter(self._console_format, datefmt=self._date_format)
            )
            handlers.append(console_handler)

        if self._log_file:
            Path(self._log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                self._log_file,
                maxBytes=self._max_file_size,
                backupCount=self._backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(
                logging.Formatter(self._file_format, datefmt=self._date_format)
            )
            handlers.append(file_handler)

        for handler in handlers:
            handler.setLevel(self._log_level.value)
        return handlers

    def _apply_handlers(self, logger: logging.Logger) -> None:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(self._log_level.value)
        for handler in self._build_handlers():
            logger.addHandler(handler)

    def get_log_stats(self) -> Dict[str, Any]:
        """获取日志统计信息"""
        stats = {
            'loggers_count': len(self._loggers),
            'log_level': self._log_level.name,
            'file_logging_enabled': self._log_file is not None,
            'console_logging_enabled': self._enable_console,
            'log_file': self._log_file,
            'max_file_size': self._max_file_size,
            'backup_count': self._backup_count
        }
        if self._log_file and os.path.exists(self._log_file):
            stats['current_log_size'] = os.path.getsize(self._log_file)
        return stats

    def cleanup(self) -> None:
        """关闭所有处理器"""
        for logger in self._loggers.values():
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
        self._loggers.clear()


log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """获取日志记录器的便捷函数"""
    return log_manager.get_logger(name)


def configure_logging(config: Dict[str, Any]) -> None:
    """配置日志系统的便捷函数"""
    log_manager.configure(config)
