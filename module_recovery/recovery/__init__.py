"""恢复步骤执行器"""

from .base import BaseStrategyRunner, StepResult
from .command_runner import CommandStrategyRunner

__all__ = ['BaseStrategyRunner', 'StepResult', 'CommandStrategyRunner']
