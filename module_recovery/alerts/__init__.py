"""告警模块"""

from .base import BaseAlerter, color_for
from .http_alerter import HTTPAlerter
from .email_alerter import EmailAlerter
from .file_alerter import FileAlerter
from .manager import NotificationDispatcher
from .integrator import AlertIntegrator

__all__ = [
    'BaseAlerter',
    'color_for',
    'NotificationDispatcher',
    'HTTPAlerter',
    'EmailAlerter',
    'FileAlerter',
    'AlertIntegrator'
]
