"""外部命令执行"""

import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional

from .log_manager import get_logger

logger = get_logger(__name__)

# 诊断输出最多保留的字符数
MAX_OUTPUT_CHARS = 2000


@dataclass
class CommandResult:
    """命令执行结果，returncode 为 None 表示命令未能正常结束"""
    argv: List[str]
    returncode: Optional[int]
    output: str = ""
    duration: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    @property
    def detail(self) -> Optional[str]:
        """用于健康检查项和会话记录的诊断文本"""
        if self.error:
            return self.error
        if self.returncode not in (0, None):
            tail = self.output[-MAX_OUTPUT_CHARS:].strip()
            return f"exit code {self.returncode}" + (f": {tail}" if tail else "")
        return None


async def run_command(argv: List[str], cwd: Optional[str] = None,
                      timeout: Optional[float] = None) -> CommandResult:
    """
    执行外部命令并收集输出，从不抛出执行相关的异常

    找不到可执行文件、超时和系统错误都会体现在返回结果的 error 字段中。

    Args:
        argv: 命令参数列表
        cwd: 工作目录
        timeout: 超时时间（秒），超时后进程被终止

    Returns:
        CommandResult: 执行结果
    """
    start_time = time.monotonic()
    logger.debug(f"执行命令: {' '.join(argv)} (cwd={cwd})")

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT
        )
    except FileNotFoundError:
        return CommandResult(argv, None, duration=time.monotonic() - start_time,
                             error=f"command not found: {argv[0]}")
    except OSError as e:
        return CommandResult(argv, None, duration=time.monotonic() - start_time,
                             error=f"failed to start {argv[0]}: {e}")

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(proc)
        logger.warning(f"命令执行超时 ({timeout}秒): {' '.join(argv)}")
        return CommandResult(argv, None, duration=time.monotonic() - start_time,
                             error=f"timed out after {timeout}s")
    except asyncio.CancelledError:
        # 被外层取消时同样结束子进程
        await asyncio.shield(_terminate(proc))
        logger.warning(f"命令被取消，已终止进程 {proc.pid}: {' '.join(argv)}")
        raise

    output = stdout.decode('utf-8', errors='replace') if stdout else ""
    return CommandResult(
        argv,
        proc.returncode,
        output=output[-MAX_OUTPUT_CHARS:],
        duration=time.monotonic() - start_time
    )


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """强制结束进程并回收，进程已退出时直接返回"""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
