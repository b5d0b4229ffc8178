"""HTTP Webhook 告警器"""

import asyncio
import json
from typing import Dict, Any
from urllib.parse import urlparse

import aiohttp

from .base import BaseAlerter, color_for
from ..models.recovery import AlertMessage
from ..utils.exceptions import AlertConfigError, AlertSendError
from ..utils.log_manager import get_logger

VALID_METHODS = ['POST', 'PUT', 'PATCH']
PAYLOAD_FORMATS = ['slack', 'json']


class HTTPAlerter(BaseAlerter):
    """
    通过 Webhook 发送告警

    默认负载是 Slack 兼容的 attachment 格式，也可以使用 json 格式
    或自定义 {{变量}} 模板。发送失败时按指数退避重试。
    """

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.logger = get_logger(f'alerter.http.{self.name}')

        self.max_retries = config.get('max_retries', 3)
        self.retry_delay = config.get('retry_delay', 1.0)
        self.retry_backoff = config.get('retry_backoff', 2.0)

        self.url = config.get('url', '')
        self.method = config.get('method', 'POST').upper()
        self.headers = config.get('headers', {})
        self.template = config.get('template', '')
        self.payload_format = config.get('payload_format', 'slack')
        self.footer = config.get('footer', 'Module Recovery System')
        self.ssl_verify = config.get('ssl_verify', True)

        if not self.validate_config():
            raise AlertConfigError(f"HTTP告警器配置无效: {name}", alert_name=name)

    def validate_config(self) -> bool:
        if not self.url:
            self.logger.error(f"HTTP告警器 {self.name} 缺少URL配置")
            return False

        parsed_url = urlparse(self.url)
        if parsed_url.scheme not in ('http', 'https') or not parsed_url.netloc:
            self.logger.error(f"HTTP告警器 {self.name} URL格式无效: {self.url}")
            return False

        if self.method not in VALID_METHODS:
            self.logger.error(
                f"HTTP告警器 {self.name} 不支持的HTTP方法: {self.method}, "
                f"支持的方法: {VALID_METHODS}"
            )
            return False

        if self.payload_format not in PAYLOAD_FORMATS:
            self.logger.error(f"HTTP告警器 {self.name} 不支持的负载格式: {self.payload_format}")
            return False

        if self.max_retries < 0 or self.retry_delay < 0:
            self.logger.error(f"HTTP告警器 {self.name} 重试配置不能为负数")
            return False

        if self.template and not self.template.strip():
            self.logger.error(f"HTTP告警器 {self.name} 模板不能为空")
            return False

        return True

    async def send_alert(self, message: AlertMessage) -> bool:
        """
        发送告警，异常在重试耗尽后以 AlertSendError 抛出

        Returns:
            bool: 是否收到成功响应
        """
        self.logger.debug(f"发送告警: severity={message.severity}, message={message.message}")

        for attempt in range(self.max_retries + 1):
            try:
                if await self._send_request(message):
                    if attempt > 0:
                        self.logger.info(f"HTTP告警器 {self.name} 重试第 {attempt} 次后发送成功")
                    return True
                error = None
            except Exception as e:
                error = e
                self.logger.warning(
                    f"HTTP告警器 {self.name} 发送失败 "
                    f"(尝试 {attempt + 1}/{self.max_retries + 1}): {e}"
                )

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * (self.retry_backoff ** attempt))
            elif error is not None:
                self.logger.error(f"HTTP告警器 {self.name} 所有重试均失败，放弃发送告警")
                raise AlertSendError(f"HTTP告警发送失败: {error}", alert_name=self.name,
                                     cause=error)

        return False

    async def _send_request(self, message: AlertMessage) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        connector = aiohttp.TCPConnector(ssl=bool(self.ssl_verify))

        async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
            try:
                async with session.request(
                        method=self.method,
                        url=self.url,
                        headers=self.headers,
                        **self._prepare_request_data(message)
                ) as response:
                    if 200 <= response.status < 300:
                        return True
                    response_text = await response.text()
                    self.logger.warning(
                        f"HTTP告警器 {self.name} 收到错误响应 "
                        f"(状态码: {response.status}, 响应: {response_text[:200]})"
                    )
                    return False
            except aiohttp.ClientError as e:
                raise AlertSendError(f"HTTP请求失败: {e}", alert_name=self.name, cause=e)
            except asyncio.TimeoutError as e:
                raise AlertSendError("HTTP请求超时", alert_name=self.name, cause=e)

    def _prepare_request_data(self, message: AlertMessage) -> Dict[str, Any]:
        if not self.template:
            return {'json': self._create_default_payload(message)}

        rendered = self.render_template(self.template, message)
        try:
            return {'json': json.loads(rendered)}
        except ValueError:
            return {'data': rendered}

    def _create_default_payload(self, message: AlertMessage) -> Dict[str, Any]:
        if self.payload_format == 'json':
            return message.to_dict()
        return {
            'attachments': [
                {
                    'color': color_for(message.severity),
                    'title': message.title,
                    'text': message.message,
                    'footer': self.footer,
                    'ts': int(message.timestamp.timestamp())
                }
            ]
        }

    def get_config_summary(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': 'http',
            'url': self.url,
            'method': self.method,
            'payload_format': self.payload_format,
            'timeout': self.get_timeout(),
            'max_retries': self.max_retries,
            'has_template': bool(self.template)
        }
