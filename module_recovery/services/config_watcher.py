"""配置文件监控器，支持运行中的守护进程热更新阈值和告警渠道"""

import asyncio
import os
from typing import Callable, Optional, List, Dict, Any

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from .config_manager import ConfigManager
from ..utils.exceptions import ConfigError
from ..utils.log_manager import get_logger

ChangeCallback = Callable[[Dict[str, Any], Dict[str, Any]], None]


class ConfigFileHandler(FileSystemEventHandler):
    """只关注目标配置文件的事件处理器"""

    def __init__(self, config_path: str, callback: Callable[[], None]):
        self.config_path = os.path.abspath(config_path)
        self.callback = callback
        self.logger = get_logger(__name__)

    def _matches(self, event) -> bool:
        if event.is_directory:
            return False
        paths = [getattr(event, 'src_path', None), getattr(event, 'dest_path', None)]
        return any(path and os.path.abspath(path) == self.config_path for path in paths)

    def on_modified(self, event):
        if self._matches(event):
            self.logger.info(f"检测到配置文件变更: {self.config_path}")
            self.callback()

    def on_created(self, event):
        # 编辑器常用 写临时文件+重命名 的方式保存
        self.on_modified(event)

    def on_moved(self, event):
        self.on_modified(event)


class ConfigWatcher:
    """配置文件监控器"""

    def __init__(self, config_manager: ConfigManager,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        初始化配置监控器

        Args:
            config_manager: 配置管理器实例
            loop: 事件循环，提供时回调会被调度到该循环中执行
        """
        self.config_manager = config_manager
        self.loop = loop
        self.observer: Optional[Observer] = None
        self.logger = get_logger(__name__)
        self.change_callbacks: List[ChangeCallback] = []
        self._running = False

    def add_change_callback(self, callback: ChangeCallback) -> None:
        """添加配置变更回调，参数为 (旧配置, 新配置)"""
        self.change_callbacks.append(callback)

    def remove_change_callback(self, callback: ChangeCallback) -> None:
        if callback in self.change_callbacks:
            self.change_callbacks.remove(callback)

    def _on_file_event(self) -> None:
        if self.loop is not None and self.loop.is_running():
            self.loop.call_soon_threadsafe(self._on_config_changed)
        else:
            self._on_config_changed()

    def _on_config_changed(self) -> None:
        """重新加载配置并通知回调，加载失败时保留旧配置"""
        old_config = self.config_manager.config
        try:
            new_config = self.config_manager.reload_config()
        except ConfigError as e:
            self.logger.error(f"配置重新加载失败，继续使用旧配置: {e.format_error()}")
            return

        self.logger.info("配置文件已重新加载")
        for callback in list(self.change_callbacks):
            try:
                callback(old_config, new_config)
            except Exception as e:
                self.logger.error(f"配置变更回调执行失败: {e}", exc_info=True)

    def start_watching(self) -> None:
        """
        开始监控配置文件

        Raises:
            ConfigError: 未指定配置文件或监控启动失败
        """
        if self._running:
            self.logger.warning("配置监控器已经在运行")
            return
        if not self.config_manager.config_path:
            raise ConfigError("未指定配置文件，无法启动配置监控")

        config_path = os.path.abspath(self.config_manager.config_path)
        try:
            self.observer = Observer()
            self.observer.schedule(
                ConfigFileHandler(config_path, self._on_file_event),
                os.path.dirname(config_path),
                recursive=False
            )
            self.observer.start()
        except OSError as e:
            self.observer = None
            self.logger.error(f"启动配置监控失败: {e}")
            raise ConfigError(f"启动配置监控失败: {e}", cause=e)

        self._running = True
        self.logger.info(f"开始监控配置文件: {config_path}")

    def stop_watching(self) -> None:
        """停止监控配置文件"""
        if not self._running:
            return
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None
        self._running = False
        self.logger.info("配置文件监控已停止")

    def is_running(self) -> bool:
        return self._running

    async def watch_config_changes_async(self, check_interval: float = 5) -> None:
        """
        以轮询方式监控配置变更，适用于不支持文件事件的文件系统

        Args:
            check_interval: 检查间隔（秒）
        """
        self.logger.info(f"开始轮询配置文件变更，检查间隔: {check_interval}秒")
        try:
            while True:
                if self.config_manager.is_config_changed():
                    self._on_config_changed()
                await asyncio.sleep(check_interval)
        except asyncio.CancelledError:
            self.logger.info("配置轮询任务已取消")
            raise

    def __enter__(self):
        self.start_watching()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_watching()
