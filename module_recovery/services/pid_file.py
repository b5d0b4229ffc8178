"""守护进程PID标记文件

同一个状态文件只能由一个守护进程使用，启动时以独占方式创建PID文件，
已存在时再检查其中的进程是否存活。
"""

import os
from typing import Optional

import psutil

from ..utils.exceptions import DaemonAlreadyRunningError
from ..utils.log_manager import get_logger


class PidFile:
    """PID标记文件"""

    def __init__(self, path: Optional[str]):
        """
        初始化PID文件

        Args:
            path: PID文件路径，为 None 时不使用标记文件
        """
        self.path = path
        self.logger = get_logger(__name__)

    def read(self) -> Optional[int]:
        """读取PID，文件不存在或内容无效时返回 None"""
        if not self.path:
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as file:
                return int(file.read().strip())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self.logger.warning(f"PID文件无效: {self.path} ({e})")
            return None

    def write(self, pid: Optional[int] = None) -> None:
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as file:
            file.write(str(pid if pid is not None else os.getpid()))
        self.logger.debug(f"已写入PID文件: {self.path}")

    def acquire(self) -> None:
        """
        以独占方式创建PID文件并写入当前进程PID

        文件已存在且指向已退出的进程时清理后重试一次。

        Raises:
            DaemonAlreadyRunningError: PID文件指向存活的其他进程，或被其他进程抢先创建
        """
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self.read() == os.getpid():
                    return
                running_pid = self.running_pid()
                if running_pid is not None:
                    raise DaemonAlreadyRunningError(
                        f"守护进程已在运行 (PID: {running_pid})", pid=running_pid)
                continue
            with os.fdopen(fd, 'w', encoding='utf-8') as file:
                file.write(str(os.getpid()))
            self.logger.debug(f"已获取PID文件: {self.path}")
            return
        raise DaemonAlreadyRunningError(f"PID文件被其他进程占用: {self.path}", pid=self.read())

    def remove(self) -> None:
        """删除PID文件，只删除属于当前进程的标记"""
        if not self.path:
            return
        pid = self.read()
        if pid is not None and pid != os.getpid():
            self.logger.warning(f"PID文件属于其他进程 ({pid})，不删除")
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    @staticmethod
    def is_alive(pid: int) -> bool:
        """进程是否存活，僵尸进程视为已退出"""
        if pid <= 0 or not psutil.pid_exists(pid):
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True

    def running_pid(self) -> Optional[int]:
        """
        PID文件指向的存活进程

        Returns:
            Optional[int]: 存活的其他进程PID，没有时返回 None
        """
        pid = self.read()
        if pid is None or pid == os.getpid():
            return None
        if self.is_alive(pid):
            return pid
        self.logger.info(f"清理过期的PID文件: {self.path} (进程 {pid} 已退出)")
        try:
            os.unlink(self.path)
        except OSError:
            pass
        return None
