"""时间戳工具

状态文件中的时间统一使用UTC，序列化为毫秒精度的ISO 8601格式（以Z结尾），
保证 save(load()) 前后内容完全一致。
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """获取当前UTC时间"""
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    将时间格式化为 ``YYYY-MM-DDTHH:MM:SS.mmmZ``

    Args:
        value: 时间对象，naive时间按UTC处理

    Returns:
        格式化后的字符串，value为None时返回None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f'{value.microsecond // 1000:03d}Z'


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    解析状态文件中的时间字符串

    Args:
        value: 时间字符串，允许为None或空字符串

    Returns:
        UTC时间对象

    Raises:
        ValueError: 时间格式无效
    """
    if value is None or value == '' or value == 'null':
        return None
    if not isinstance(value, str):
        raise ValueError(f"时间字段必须是字符串: {value!r}")

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    # 与序列化精度保持一致
    return parsed.replace(microsecond=(parsed.microsecond // 1000) * 1000)
