"""告警器基类"""

import json
from abc import ABC, abstractmethod
from typing import Dict, Any

from ..models.recovery import AlertMessage
from ..utils.exceptions import AlertSendError

SEVERITY_COLORS = {
    'critical': '#ff0000',
    'error': '#ff0000',
    'severe': '#ff8800',
    'moderate': '#ffaa00',
}
DEFAULT_COLOR = '#00aa00'


def color_for(severity: str) -> str:
    """严重级别对应的展示颜色"""
    return SEVERITY_COLORS.get(severity, DEFAULT_COLOR)


class BaseAlerter(ABC):
    """告警器抽象基类"""

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化告警器

        Args:
            name: 告警器名称
            config: 告警器配置参数
        """
        self.name = name
        self.config = config
        self.alerter_type = self.__class__.__name__.replace('Alerter', '').lower()

    @abstractmethod
    async def send_alert(self, message: AlertMessage) -> bool:
        """
        发送告警消息

        Args:
            message: 告警消息对象

        Returns:
            bool: 发送是否成功
        """

    @abstractmethod
    def validate_config(self) -> bool:
        """验证配置参数是否有效"""

    def get_timeout(self) -> float:
        """单次发送的超时时间（秒）"""
        return self.config.get('timeout', 30)

    def template_vars(self, message: AlertMessage) -> Dict[str, str]:
        """模板可用的变量"""
        template_vars = {
            'message': message.message,
            'severity': message.severity,
            'event': message.event.value if message.event else '',
            'title': message.title,
            'color': color_for(message.severity),
            'timestamp': message.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            'ts': str(int(message.timestamp.timestamp()))
        }
        for key, value in message.metadata.items():
            template_vars[f'metadata_{key}'] = str(value)
        return template_vars

    def render_template(self, template_str: str, message: AlertMessage) -> str:
        """
        使用 {{variable}} 语法渲染模板，JSON 模板中的变量值会被转义

        Raises:
            AlertSendError: JSON 模板渲染结果无效
        """
        stripped = template_str.strip()
        is_json_template = stripped.startswith('{') and stripped.endswith('}')

        rendered = template_str
        for key, value in self.template_vars(message).items():
            if is_json_template:
                # json.dumps 的结果去掉首尾引号即为转义后的字符串内容
                value = json.dumps(value, ensure_ascii=False)[1:-1]
            rendered = rendered.replace(f'{{{{{key}}}}}', value)

        if is_json_template:
            try:
                json.loads(rendered)
            except ValueError as e:
                raise AlertSendError(f"渲染后的JSON格式无效: {e}", alert_name=self.name)
        return rendered
