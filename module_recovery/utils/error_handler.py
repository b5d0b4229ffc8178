"""重试机制"""

import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Callable, Optional, List, Tuple, TypeVar

from .exceptions import RecoveryOrchestratorError
from .log_manager import get_logger

T = TypeVar('T')
logger = get_logger(__name__)

# 未指定可重试类型时默认重试的瞬时错误
TRANSIENT_ERRORS: Tuple[type, ...] = (ConnectionError, TimeoutError, OSError)


class RetryStrategy(Enum):
    """重试策略"""
    FIXED_DELAY = "fixed_delay"
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"


@dataclass
class RetryConfig:
    """重试配置"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retryable_errors: Optional[List[type]] = None


class RetryHandler:
    """计算重试延迟并判断错误是否可重试"""

    def __init__(self, config: RetryConfig):
        self.config = config

    def calculate_delay(self, attempt: int) -> float:
        """
        计算第 attempt 次失败后的等待时间

        Args:
            attempt: 已失败的次数，从1开始

        Returns:
            float: 延迟秒数
        """
        if self.config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = self.config.base_delay * (self.config.backoff_multiplier ** (attempt - 1))
        elif self.config.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.config.base_delay * attempt
        else:
            delay = self.config.base_delay

        delay = min(delay, self.config.max_delay)
        if self.config.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """判断是否应该重试"""
        if attempt >= self.config.max_attempts:
            return False

        if self.config.retryable_errors:
            return isinstance(error, tuple(self.config.retryable_errors))

        if isinstance(error, RecoveryOrchestratorError):
            return error.recoverable

        return isinstance(error, TRANSIENT_ERRORS)


def retry_on_error(
        max_attempts: int = 3,
        base_delay: float = 1.0,
        strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF,
        retryable_errors: Optional[List[type]] = None,
        jitter: bool = True
):
    """
    重试装饰器，同时支持同步函数和协程函数

    Args:
        max_attempts: 最大尝试次数
        base_delay: 基础延迟秒数
        strategy: 延迟增长策略
        retryable_errors: 可重试的异常类型，为空时重试瞬时错误
        jitter: 是否为延迟添加随机抖动
    """
    config = RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        strategy=strategy,
        retryable_errors=retryable_errors,
        jitter=jitter
    )
    retry_handler = RetryHandler(config)

    def next_delay(func: Callable, error: Exception, attempt: int) -> float:
        if not retry_handler.should_retry(error, attempt):
            if attempt >= config.max_attempts:
                logger.error(f"函数 {func.__name__} 重试失败，已达到最大重试次数: {error}")
            else:
                logger.warning(f"函数 {func.__name__} 的错误不可重试: {error}")
            raise error
        delay = retry_handler.calculate_delay(attempt)
        logger.warning(
            f"函数 {func.__name__} 执行失败 (尝试 {attempt}/{config.max_attempts}): "
            f"{error}，{delay:.2f}秒后重试"
        )
        return delay

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs) -> T:
                attempt = 1
                while True:
                    try:
                        return await func(*args, **kwargs)
                    except Exception as error:
                        await asyncio.sleep(next_delay(func, error, attempt))
                        attempt += 1

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> T:
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as error:
                    time.sleep(next_delay(func, error, attempt))
                    attempt += 1

        return sync_wrapper

    return decorator
