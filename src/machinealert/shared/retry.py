"""
Retry-with-backoff for idempotent store reads.

State-mutating paths must not go through this helper: a retried write
without an idempotency key could apply twice.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from machinealert.shared.exceptions import StoreUnavailableError
from machinealert.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff parameters."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the zero-based ``attempt``."""
        delay = self.base_delay_seconds * (2 ** attempt)
        return min(delay, self.max_delay_seconds)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str = "store read",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` retrying only on ``StoreUnavailableError``.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Backoff parameters.
        operation_name: Label used in log records.
        sleep: Injected for tests.

    Returns:
        The operation's result.

    Raises:
        StoreUnavailableError: When every attempt failed.
    """
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except StoreUnavailableError as e:
            if attempt >= policy.max_attempts - 1:
                logger.error(
                    "Store operation failed after all retries",
                    extra={
                        "operation": operation_name,
                        "attempts": policy.max_attempts,
                        "error": str(e),
                    },
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Store operation failed, retrying",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_attempts": policy.max_attempts,
                    "delay_seconds": delay,
                    "error": str(e),
                },
            )
            await sleep(delay)
    raise RuntimeError("retry_async requires max_attempts >= 1")
