from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: Optional[float] = None

    def get_delay(self, attempt: int) -> float:
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.max_delay is not None:
            return min(delay, self.max_delay)
        return delay

    @property
    def attempts(self) -> int:
        return max(1, int(self.max_retries))


async def with_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_attempt: Optional[Callable[[int, Optional[BaseException]], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function with exponential backoff retry.

    Args:
        func: Async function to execute
        policy: Attempt budget and backoff. Defaults to 3 attempts from 1s.
        should_retry: Predicate deciding whether a failure is worth another
            attempt. If None, retry all.
        on_attempt: Called after every attempt with its number and the
            exception it raised (None on success).
        sleep: Awaitable used for the backoff delay.
    """
    policy = policy or RetryPolicy()
    attempts = policy.attempts

    for attempt in range(1, attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            if on_attempt is not None:
                on_attempt(attempt, exc)
            if should_retry is not None and not should_retry(exc):
                raise
            if attempt >= attempts:
                logger.error("All %s attempts failed: %s", attempts, exc)
                raise
            delay = policy.get_delay(attempt)
            logger.warning(
                "Attempt %s/%s failed: %s. Retrying in %.2fs...",
                attempt,
                attempts,
                exc,
                delay,
            )
            await sleep(delay)
        else:
            if on_attempt is not None:
                on_attempt(attempt, None)
            return result

    raise RuntimeError("Retry loop exited without a result")


__all__ = ["RetryPolicy", "with_retry"]
