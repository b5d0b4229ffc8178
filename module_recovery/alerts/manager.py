"""通知分发器"""

import asyncio
from typing import Dict, List, Any, Optional, Type

from .base import BaseAlerter
from .email_alerter import EmailAlerter
from .file_alerter import FileAlerter
from .http_alerter import HTTPAlerter
from ..models.recovery import AlertMessage, NotificationEvent
from ..utils.exceptions import AlertConfigError
from ..utils.log_manager import get_logger

ALERTER_TYPES: Dict[str, Type[BaseAlerter]] = {
    'http': HTTPAlerter,
    'email': EmailAlerter,
    'file': FileAlerter,
}

# 单个告警器一次投递（含重试）的默认时限
DEFAULT_DELIVER_TIMEOUT = 60


class NotificationDispatcher:
    """
    把通知并发投递到所有告警器

    每个告警器的投递都有时限，失败只记录日志，notify 从不抛出异常。
    """

    def __init__(self, alert_configs: Optional[List[Dict[str, Any]]] = None):
        """
        初始化通知分发器

        Args:
            alert_configs: 告警配置列表，无效的配置会被跳过
        """
        self.alerters: List[BaseAlerter] = []
        self.logger = get_logger(__name__)
        self.load_alerters(alert_configs or [])

    @staticmethod
    def create_alerter(alert_config: Dict[str, Any]) -> BaseAlerter:
        """
        根据配置创建告警器

        Raises:
            AlertConfigError: 类型不支持或配置无效
        """
        alert_type = alert_config.get('type')
        alerter_class = ALERTER_TYPES.get(alert_type)
        if alerter_class is None:
            raise AlertConfigError(f"不支持的告警类型: {alert_type}",
                                   alert_name=alert_config.get('name'))
        return alerter_class(alert_config.get('name', alert_type), alert_config)

    def load_alerters(self, alert_configs: List[Dict[str, Any]]) -> None:
        """按配置重建告警器列表"""
        alerters = []
        for alert_config in alert_configs:
            if not alert_config.get('enabled', True):
                self.logger.info(f"告警器 {alert_config.get('name')} 已禁用，跳过")
                continue
            try:
                alerters.append(self.create_alerter(alert_config))
            except AlertConfigError as e:
                self.logger.error(f"跳过无效的告警配置: {e.format_error()}")
        self.alerters = alerters
        self.logger.info(f"已加载 {len(self.alerters)} 个告警器")

    def add_alerter(self, alerter: BaseAlerter) -> None:
        if not isinstance(alerter, BaseAlerter):
            raise AlertConfigError(f"告警器必须继承自BaseAlerter: {type(alerter)}")
        self.alerters.append(alerter)
        self.logger.info(f"已添加告警器: {alerter.name} ({alerter.alerter_type})")

    def remove_alerter(self, name: str) -> bool:
        for i, alerter in enumerate(self.alerters):
            if alerter.name == name:
                self.alerters.pop(i)
                self.logger.info(f"已移除告警器: {name}")
                return True
        return False

    def get_alerter_names(self) -> List[str]:
        return [alerter.name for alerter in self.alerters]

    async def notify(self, message: str, severity: str,
                     event: Optional[NotificationEvent] = None,
                     metadata: Optional[Dict[str, Any]] = None,
                     title: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        发送通知

        Args:
            message: 通知文本
            severity: 严重级别字符串（critical/severe/moderate/minor/success/error等）
            event: 对应的状态转换
            metadata: 附加数据
            title: 标题

        Returns:
            List[Dict[str, Any]]: 每个告警器的投递结果
        """
        alert_message = AlertMessage(message=message, severity=severity, event=event,
                                     metadata=dict(metadata or {}))
        if title:
            alert_message.title = title
        return await self.dispatch(alert_message)

    async def dispatch(self, message: AlertMessage) -> List[Dict[str, Any]]:
        self.logger.info(f"通知 [{message.severity}]: {message.message}")
        if not self.alerters:
            return []

        results = await asyncio.gather(
            *(self._send_to_alerter(alerter, message) for alerter in self.alerters)
        )
        failed = [result['alerter'] for result in results if not result['success']]
        if failed:
            self.logger.warning(f"以下告警器发送失败: {', '.join(failed)}")
        return list(results)

    async def _send_to_alerter(self, alerter: BaseAlerter,
                               message: AlertMessage) -> Dict[str, Any]:
        timeout = alerter.config.get('deliver_timeout', DEFAULT_DELIVER_TIMEOUT)
        try:
            success = await asyncio.wait_for(alerter.send_alert(message), timeout=timeout)
            return {'alerter': alerter.name, 'success': bool(success), 'error': None}
        except asyncio.TimeoutError:
            self.logger.error(f"告警器 {alerter.name} 投递超时 ({timeout}秒)")
            return {'alerter': alerter.name, 'success': False, 'error': 'timeout'}
        except Exception as e:
            self.logger.error(f"告警器 {alerter.name} 发送失败: {e}")
            return {'alerter': alerter.name, 'success': False, 'error': str(e)}
