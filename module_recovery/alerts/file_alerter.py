"""告警文件输出"""

import asyncio
import os
from typing import Dict, Any

from .base import BaseAlerter
from ..models.recovery import AlertMessage
from ..utils.exceptions import AlertConfigError, AlertSendError
from ..utils.fileio import write_json_atomic
from ..utils.log_manager import get_logger


class FileAlerter(BaseAlerter):
    """把每条告警写成告警目录下的一个 JSON 文件"""

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.logger = get_logger(f'alerter.file.{self.name}')
        self.directory = config.get('directory', '')
        self.prefix = config.get('prefix', 'alert')

        if not self.validate_config():
            raise AlertConfigError(f"文件告警器配置无效: {name}", alert_name=name)

    def validate_config(self) -> bool:
        if not self.directory:
            self.logger.error(f"文件告警器 {self.name} 缺少目录配置")
            return False
        if os.path.exists(self.directory) and not os.path.isdir(self.directory):
            self.logger.error(f"文件告警器 {self.name} 的目标不是目录: {self.directory}")
            return False
        return True

    def _file_path(self, message: AlertMessage) -> str:
        subject = message.metadata.get('module') or (message.event.value if message.event
                                                     else message.severity)
        stamp = message.timestamp.strftime('%Y%m%d_%H%M%S_%f')
        return os.path.join(self.directory, f"{self.prefix}-{subject}-{stamp}.json")

    async def send_alert(self, message: AlertMessage) -> bool:
        path = self._file_path(message)
        try:
            await asyncio.get_running_loop().run_in_executor(
                None, write_json_atomic, path, message.to_dict())
        except OSError as e:
            raise AlertSendError(f"写入告警文件失败: {e}", alert_name=self.name, cause=e)
        self.logger.debug(f"告警已写入: {path}")
        return True
