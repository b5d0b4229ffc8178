"""恢复冷却期判断"""

from datetime import datetime
from typing import Optional

from ..models.recovery import TriggerState
from ..utils.timestamps import utc_now

DEFAULT_COOLDOWN_SECONDS = 1800


class CooldownGuard:
    """上次恢复尝试后的冷却期内不再启动新的恢复"""

    @staticmethod
    def remaining(state: TriggerState, now: Optional[datetime] = None,
                  cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS) -> float:
        """
        冷却期剩余秒数

        Args:
            state: 触发器状态
            now: 当前时间，默认当前UTC时间
            cooldown_seconds: 冷却期长度

        Returns:
            float: 剩余秒数，不在冷却期时为0
        """
        if state.last_recovery_attempt is None:
            return 0.0
        elapsed = ((now or utc_now()) - state.last_recovery_attempt).total_seconds()
        return max(0.0, cooldown_seconds - elapsed)

    @classmethod
    def is_in_cooldown(cls, state: TriggerState, now: Optional[datetime] = None,
                       cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS) -> bool:
        return cls.remaining(state, now, cooldown_seconds) > 0
