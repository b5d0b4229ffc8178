"""模块探测器工厂"""

from typing import Dict, Type, Any, List

from .base import BaseModuleProber
from ..utils.exceptions import ProbeError, ErrorCode


class ProberFactory:
    """探测器工厂，按配置中的 type 创建探测器"""

    def __init__(self):
        self._probers: Dict[str, Type[BaseModuleProber]] = {}

    def register_prober(self, prober_type: str, prober_class: Type[BaseModuleProber]) -> None:
        """
        注册探测器类

        Raises:
            ProbeError: 类型不合法或重复注册
        """
        if not issubclass(prober_class, BaseModuleProber):
            raise ProbeError(f"探测器类 {prober_class.__name__} 必须继承自 BaseModuleProber",
                             ErrorCode.PROBE_INITIALIZATION_ERROR)
        if prober_type in self._probers:
            raise ProbeError(f"探测器类型 '{prober_type}' 已经注册",
                             ErrorCode.PROBE_INITIALIZATION_ERROR)
        self._probers[prober_type] = prober_class

    def unregister_prober(self, prober_type: str) -> None:
        self._probers.pop(prober_type, None)

    def create_prober(self, workspace_config: Dict[str, Any]) -> BaseModuleProber:
        """
        根据工作区配置创建探测器

        Args:
            workspace_config: 工作区配置

        Returns:
            BaseModuleProber: 探测器实例

        Raises:
            ProbeError: 类型不支持或配置无效
        """
        prober_type = workspace_config.get('probe', {}).get('type', 'command')
        if prober_type not in self._probers:
            raise ProbeError(f"不支持的探测器类型: '{prober_type}'",
                             ErrorCode.PROBE_INITIALIZATION_ERROR)

        prober = self._probers[prober_type](prober_type, workspace_config)
        if not prober.validate_config():
            raise ProbeError(f"探测器 '{prober_type}' 的配置验证失败",
                             ErrorCode.PROBE_INITIALIZATION_ERROR, recoverable=False)
        return prober

    def get_supported_types(self) -> List[str]:
        return list(self._probers.keys())

    def is_type_supported(self, prober_type: str) -> bool:
        return prober_type in self._probers


prober_factory = ProberFactory()


def register_prober(prober_type: str):
    """
    装饰器：注册探测器类

    Args:
        prober_type: 探测器类型名称
    """
    def decorator(prober_class: Type[BaseModuleProber]):
        prober_factory.register_prober(prober_type, prober_class)
        return prober_class

    return decorator
