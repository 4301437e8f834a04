"""统一的重试策略，按动作类型配置"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, TypeVar

from .errors import ActionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    backoff_s: float = 0.0
    multiplier: float = 2.0  # 1.0 即固定间隔

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次失败后的等待秒数（attempt 从 1 开始）"""
        return self.backoff_s * (self.multiplier ** (attempt - 1))

    async def run(self, label: str, func: Callable[[], Awaitable[T]]) -> T:
        """
        执行 func，失败时按策略重试。

        ActionError.retryable 为 False 时立即抛出；其余异常重试到次数用完后抛出最后一次的异常。
        """
        attempt = 1
        while True:
            try:
                return await func()
            except Exception as e:
                if isinstance(e, ActionError) and not e.retryable:
                    raise
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.info("↻ %s 第 %d 次失败 (%s)，%.1fs 后重试", label, attempt, e, delay)
                if delay > 0:
                    await asyncio.sleep(delay)
                attempt += 1


NO_RETRY = RetryPolicy()

DEFAULT_RETRY_POLICIES: Dict[str, RetryPolicy] = {
    "navigate": RetryPolicy(max_attempts=2, backoff_s=1.0),
    "search": RetryPolicy(max_attempts=2, backoff_s=1.0),
    "click": RetryPolicy(max_attempts=2, backoff_s=0.5),
    "type": RetryPolicy(max_attempts=2, backoff_s=0.5),
    "extract": RetryPolicy(max_attempts=2, backoff_s=0.5),
    "scroll": NO_RETRY,
    "wait": NO_RETRY,
}
