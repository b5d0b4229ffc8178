"""JSON 文件读写"""

import json
import os
import tempfile
from typing import Any

from .error_handler import retry_on_error, RetryStrategy


def dump_json(payload: Any) -> str:
    """序列化为稳定的 JSON 文本，相同内容总是得到相同的字节"""
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


@retry_on_error(max_attempts=3, base_delay=0.1, strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
                retryable_errors=[OSError])
def write_json_atomic(path: str, payload: Any) -> None:
    """
    原子写入 JSON 文件

    先写入同目录下的临时文件并 fsync，再用 os.replace 替换目标文件，
    读取方要么看到旧内容要么看到新内容。瞬时的 OSError 会被重试。

    Args:
        path: 目标文件路径
        payload: 可 JSON 序列化的对象
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp",
                                    dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as file:
            file.write(dump_json(payload))
            file.flush()
            os.fsync(file.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
