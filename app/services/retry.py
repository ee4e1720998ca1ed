# app/services/retry.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Tuple, Type, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """max_attempts 含第一次；第 n 次失敗後等 base_delay * multiplier**(n-1) 秒"""
    max_attempts: int = 2
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        for attempt in range(self.max_attempts - 1):
            yield self.base_delay * (self.backoff_multiplier ** attempt)


async def retry_async(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    依 policy 重試 async 操作；全部失敗時把最後一次的例外往上丟。
    """
    delays = list(policy.delays())
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await op()
        except retry_on as e:
            if attempt >= attempts:
                raise
            delay = delays[attempt - 1]
            logger.warning("{} failed (attempt {}/{}): {}; retrying in {:.1f}s", label, attempt, attempts, e, delay)
            await sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
