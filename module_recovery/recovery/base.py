"""恢复策略执行器基类"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional

from ..utils.log_manager import get_logger


@dataclass
class StepResult:
    """单个恢复步骤的执行结果"""
    succeeded: bool
    detail: Optional[str] = None
    duration: float = 0.0


class BaseStrategyRunner(ABC):
    """
    恢复步骤的执行者

    编排器只关心每一步是否成功，具体如何校验依赖、重建模块
    或执行完整恢复由实现类决定。
    """

    def __init__(self, config: Dict[str, Any], workspace_config: Dict[str, Any]):
        """
        Args:
            config: recovery 配置段
            workspace_config: workspace 配置段，用于定位工作区和模块目录
        """
        self.config = config
        self.workspace_config = workspace_config
        self.runner_type = self.__class__.__name__.replace('StrategyRunner', '').lower()
        self.logger = get_logger(f'recovery.{self.runner_type}')

    @property
    def workspace_root(self) -> str:
        return self.workspace_config.get('root', '.')

    def module_path(self, module_id: str) -> str:
        return os.path.join(self.workspace_root,
                            self.workspace_config.get('modules_dir', 'packages'),
                            module_id)

    @abstractmethod
    async def validate_dependencies(self) -> StepResult:
        """校验工作区依赖"""

    @abstractmethod
    async def rebuild_module(self, module_id: str) -> StepResult:
        """重建单个模块"""

    @abstractmethod
    async def full_recovery(self, force: bool = False) -> StepResult:
        """执行完整恢复流程"""

    async def clear_recovery_state(self) -> StepResult:
        """删除恢复流程自身的状态文件，使下次完整恢复从头开始"""
        state_file = self.config.get('recovery_state_file')
        if not state_file:
            return StepResult(True, "no recovery state file configured")

        path = state_file if os.path.isabs(state_file) else os.path.join(self.workspace_root,
                                                                          state_file)
        try:
            os.remove(path)
        except FileNotFoundError:
            return StepResult(True, f"recovery state already clear: {path}")
        except OSError as e:
            return StepResult(False, f"failed to remove {path}: {e}")

        self.logger.info(f"已清除恢复状态文件: {path}")
        return StepResult(True, f"removed {path}")

    def get_timeout(self) -> float:
        """整个恢复策略的超时时间（秒）"""
        return self.config.get('timeout', 1800)
