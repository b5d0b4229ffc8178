"""邮件告警器"""

import asyncio
import re
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr
from typing import Dict, Any

import aiosmtplib

from .base import BaseAlerter
from ..models.recovery import AlertMessage
from ..utils.exceptions import AlertConfigError, AlertSendError
from ..utils.log_manager import get_logger

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

DEFAULT_SUBJECT = 'Recovery Alert [{{severity}}] - {{timestamp}}'
DEFAULT_BODY = """{{title}}

{{message}}

严重级别: {{severity}}
事件: {{event}}
时间: {{timestamp}}

---
此邮件由模块健康自动恢复系统发送，请勿回复。
"""


class EmailAlerter(BaseAlerter):
    """通过SMTP发送告警邮件"""

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.logger = get_logger(f'alerter.email.{self.name}')

        self.smtp_server = config.get('smtp_server', '')
        self.smtp_port = config.get('smtp_port', 587)
        self.username = config.get('username', '')
        self.password = config.get('password', '')
        self.use_tls = config.get('use_tls', False)
        self.start_tls = config.get('start_tls', True)

        self.from_email = config.get('from_email', self.username)
        self.from_name = config.get('from_name', 'Module Recovery')
        self.to_emails = config.get('to_emails', [])
        self.cc_emails = config.get('cc_emails', [])

        self.subject_template = config.get('subject_template', DEFAULT_SUBJECT)
        self.body_template = config.get('body_template', DEFAULT_BODY)

        self.max_retries = config.get('max_retries', 2)
        self.retry_delay = config.get('retry_delay', 2.0)

        if not self.validate_config():
            raise AlertConfigError(f"邮件告警器配置无效: {name}", alert_name=name)

    def validate_config(self) -> bool:
        if not self.smtp_server:
            self.logger.error(f"邮件告警器 {self.name} 缺少SMTP服务器配置")
            return False

        if not self.from_email:
            self.logger.error(f"邮件告警器 {self.name} 缺少发件人邮箱配置")
            return False

        if not self.to_emails:
            self.logger.error(f"邮件告警器 {self.name} 缺少收件人邮箱配置")
            return False

        for email in self.to_emails + self.cc_emails + [self.from_email]:
            if not EMAIL_PATTERN.match(email):
                self.logger.error(f"邮件告警器 {self.name} 邮箱格式无效: {email}")
                return False

        if isinstance(self.smtp_port, bool) or not isinstance(self.smtp_port, int) \
                or self.smtp_port <= 0:
            self.logger.error(f"邮件告警器 {self.name} SMTP端口无效: {self.smtp_port}")
            return False

        if self.use_tls and self.start_tls:
            self.logger.error(f"邮件告警器 {self.name} 不能同时启用 use_tls 和 start_tls")
            return False

        if bool(self.username) != bool(self.password):
            self.logger.error(f"邮件告警器 {self.name} 用户名和密码必须同时配置")
            return False

        return True

    async def send_alert(self, message: AlertMessage) -> bool:
        for attempt in range(self.max_retries + 1):
            try:
                await self._send_email(message)
                self.logger.info(
                    f"邮件告警发送成功: {self.from_email} -> {', '.join(self.to_emails)}"
                )
                return True
            except Exception as e:
                self.logger.warning(
                    f"邮件告警器 {self.name} 发送失败 "
                    f"(尝试 {attempt + 1}/{self.max_retries + 1}): {e}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    raise AlertSendError(f"邮件告警发送失败: {e}", alert_name=self.name,
                                         cause=e)
        return False

    async def _send_email(self, message: AlertMessage) -> None:
        smtp_kwargs: Dict[str, Any] = {
            'hostname': self.smtp_server,
            'port': self.smtp_port,
            'timeout': self.get_timeout(),
            'use_tls': self.use_tls,
            'start_tls': self.start_tls
        }
        if self.username:
            smtp_kwargs['username'] = self.username
            smtp_kwargs['password'] = self.password

        await aiosmtplib.send(self._create_email_message(message), **smtp_kwargs)

    def _create_email_message(self, message: AlertMessage) -> MIMEMultipart:
        email_msg = MIMEMultipart()
        email_msg['From'] = formataddr((self.from_name, self.from_email))
        email_msg['To'] = ', '.join(self.to_emails)
        if self.cc_emails:
            email_msg['Cc'] = ', '.join(self.cc_emails)
        email_msg['Subject'] = self.render_template(self.subject_template, message)
        email_msg.attach(MIMEText(self.render_template(self.body_template, message),
                                  'plain', 'utf-8'))
        return email_msg

    def get_config_summary(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': 'email',
            'smtp_server': self.smtp_server,
            'smtp_port': self.smtp_port,
            'from_email': self.from_email,
            'to_emails_count': len(self.to_emails),
            'cc_emails_count': len(self.cc_emails),
            'timeout': self.get_timeout(),
            'max_retries': self.max_retries
        }
