"""模块探测器基类"""

import os
from abc import ABC, abstractmethod
from typing import Dict, Any

from ..models.health import ProbeResult
from ..utils.log_manager import get_logger


class BaseModuleProber(ABC):
    """
    模块探测器抽象基类

    回答关于模块的三个相互独立的问题：是否存在、能否构建、能否通过类型检查。
    每个问题都有各自的超时，结果中的诊断文本只会被透传，不会被解析。
    """

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化探测器

        Args:
            name: 探测器名称
            config: 工作区配置（包含 probe 子配置）
        """
        self.name = name
        self.config = config
        self.probe_config: Dict[str, Any] = config.get('probe', {})
        self.prober_type = self.__class__.__name__.replace('Prober', '').lower()
        self.logger = get_logger(f'prober.{self.prober_type}.{self.name}')

    def module_path(self, module_id: str) -> str:
        """模块所在目录"""
        return os.path.join(self.config.get('root', '.'),
                            self.config.get('modules_dir', 'packages'),
                            module_id)

    async def exists(self, module_id: str) -> ProbeResult:
        """模块目录是否存在"""
        path = self.module_path(module_id)
        if os.path.isdir(path):
            return ProbeResult(True)
        return ProbeResult(False, f"module directory not found: {path}")

    @abstractmethod
    async def builds(self, module_id: str) -> ProbeResult:
        """模块能否构建"""

    @abstractmethod
    async def type_checks(self, module_id: str) -> ProbeResult:
        """模块能否通过类型检查/测试"""

    async def runs_tests(self, module_id: str) -> ProbeResult:
        """执行模块测试，只用于记录耗时，不参与评分"""
        return ProbeResult(True, "test command not configured")

    @abstractmethod
    def validate_config(self) -> bool:
        """验证配置参数是否有效"""

    def get_timeout(self) -> float:
        """单个探测命令的超时时间（秒）"""
        return self.probe_config.get('timeout', 120)

    def get_module_timeout(self) -> float:
        """单个模块整体评分的超时时间（秒）"""
        return self.probe_config.get('module_timeout', 300)
