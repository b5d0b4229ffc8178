"""触发器状态存储

负责 TriggerState 的加载、原子持久化、计数器递增和重置。
"""

import copy
import json
import os
from typing import Optional

from ..models.recovery import TriggerState, TriggerThresholds
from ..utils.exceptions import StateCorruptionError
from ..utils.fileio import dump_json, write_json_atomic
from ..utils.log_manager import get_logger
from ..utils.timestamps import utc_now


class TriggerStateStore:
    """触发器状态存储

    state_file 为 None 时只在内存中保存状态，用于测试和试运行。
    """

    def __init__(self, state_file: Optional[str] = None,
                 default_thresholds: Optional[TriggerThresholds] = None):
        """初始化状态存储

        Args:
            state_file: 状态文件路径
            default_thresholds: 文件不存在或重置时使用的阈值
        """
        self.state_file = state_file
        self.default_thresholds = default_thresholds or TriggerThresholds()
        self._memory: Optional[TriggerState] = None
        self.logger = get_logger(__name__)

    def default_state(self) -> TriggerState:
        """默认状态"""
        return TriggerState(thresholds=copy.deepcopy(self.default_thresholds))

    def load(self) -> TriggerState:
        """加载状态，文件不存在时返回默认状态

        Returns:
            TriggerState: 触发器状态

        Raises:
            StateCorruptionError: 状态文件无法读取或格式错误
        """
        if self.state_file is None:
            return copy.deepcopy(self._memory) if self._memory else self.default_state()

        try:
            with open(self.state_file, 'r', encoding='utf-8') as file:
                data = json.load(file)
        except FileNotFoundError:
            return self.default_state()
        except (OSError, ValueError) as e:
            raise StateCorruptionError(f"状态文件无法读取: {e}",
                                       state_file=self.state_file, cause=e)

        try:
            return TriggerState.from_dict(data)
        except (ValueError, TypeError) as e:
            raise StateCorruptionError(f"状态文件格式错误: {e}",
                                       state_file=self.state_file, cause=e)

    def save(self, state: TriggerState) -> None:
        """原子写入状态

        Args:
            state: 触发器状态
        """
        if self.state_file is None:
            self._memory = copy.deepcopy(state)
            return
        write_json_atomic(self.state_file, state.to_dict())

    def serialize(self, state: TriggerState) -> str:
        """状态的持久化文本表示"""
        return dump_json(state.to_dict())

    def load_or_recover(self) -> TriggerState:
        """加载状态，文件损坏时隔离损坏文件并重建默认状态

        Returns:
            TriggerState: 触发器状态，损坏时为默认状态
        """
        try:
            return self.load()
        except StateCorruptionError as e:
            self.logger.critical(f"触发器状态损坏，使用默认状态继续运行: {e.format_error()}")
            self._quarantine()
            state = self.default_state()
            try:
                self.save(state)
            except OSError as save_error:
                self.logger.critical(f"无法重建状态文件: {save_error}")
            return state

    def _quarantine(self) -> Optional[str]:
        if self.state_file is None or not os.path.exists(self.state_file):
            return None
        suffix = utc_now().strftime('%Y%m%d%H%M%S%f')
        target = f"{self.state_file}.corrupt-{suffix}"
        try:
            os.replace(self.state_file, target)
        except OSError as e:
            self.logger.error(f"无法隔离损坏的状态文件: {e}")
            return None
        self.logger.warning(f"损坏的状态文件已移至: {target}")
        return target

    def increment(self, counter_name: str) -> int:
        """递增统计计数器并持久化

        Args:
            counter_name: 计数器名称（如 totalChecks 或 total_checks）

        Returns:
            int: 新的计数值
        """
        state = self.load()
        value = state.statistics.increment(counter_name)
        self.save(state)
        return value

    def reset(self) -> TriggerState:
        """恢复默认状态，不影响健康历史

        Returns:
            TriggerState: 默认状态
        """
        state = self.default_state()
        self.save(state)
        self.logger.info("触发器状态已重置")
        return state

