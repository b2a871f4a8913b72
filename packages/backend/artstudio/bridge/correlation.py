from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from ..exceptions import BridgeTimeoutError, PendingRequestEvictedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 32


def new_correlation_id(prefix: str = "req") -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


@dataclass
class PendingRequest:
    correlation_id: str
    created_at: float
    future: asyncio.Future
    timeout_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


class CorrelationTable:
    """Pending correlated requests, keyed by correlation id.

    Each entry is removed exactly once: by the first matching result, by its
    timeout, or by capacity eviction. Anything that arrives for an id that
    is no longer pending is ignored.
    """

    def __init__(self, *, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.max_pending = max(1, int(max_pending))
        self._pending: "OrderedDict[str, PendingRequest]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._pending

    def register(self, correlation_id: str, timeout: float) -> PendingRequest:
        if correlation_id in self._pending:
            raise ValueError(f"correlation id already pending: {correlation_id}")
        loop = asyncio.get_running_loop()
        while len(self._pending) >= self.max_pending:
            oldest_id = next(iter(self._pending))
            logger.warning("Pending request limit %s reached; evicting %s", self.max_pending, oldest_id)
            self._settle(
                oldest_id,
                error=PendingRequestEvictedError(
                    "Request evicted: too many pending bridge requests",
                    correlation_id=oldest_id,
                ),
            )

        request = PendingRequest(
            correlation_id=correlation_id,
            created_at=time.monotonic(),
            future=loop.create_future(),
        )
        request.timeout_handle = loop.call_later(max(0.0, float(timeout)), self._expire, correlation_id, timeout)
        self._pending[correlation_id] = request
        return request

    def resolve(self, correlation_id: Optional[str], value: Any) -> bool:
        """Settle a pending request with ``value``; False if it is not pending."""
        return self._settle(correlation_id, value=value)

    def reject(self, correlation_id: Optional[str], error: BaseException) -> bool:
        return self._settle(correlation_id, error=error)

    def discard(self, correlation_id: Optional[str]) -> bool:
        """Remove an entry without settling it, e.g. when the caller gave up."""
        request = self._pending.pop(correlation_id, None) if correlation_id else None
        if request is None:
            return False
        if request.timeout_handle is not None:
            request.timeout_handle.cancel()
        if not request.future.done():
            request.future.cancel()
        return True

    def reject_all(self, error_factory) -> int:
        count = 0
        for correlation_id in list(self._pending.keys()):
            if self._settle(correlation_id, error=error_factory(correlation_id)):
                count += 1
        return count

    def _expire(self, correlation_id: str, timeout: float) -> None:
        self._settle(
            correlation_id,
            error=BridgeTimeoutError(
                f"No response from the storefront within {timeout:g}s",
                correlation_id=correlation_id,
            ),
        )

    def _settle(
        self,
        correlation_id: Optional[str],
        *,
        value: Any = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        if not correlation_id:
            return False
        request = self._pending.pop(correlation_id, None)
        if request is None:
            return False
        if request.timeout_handle is not None:
            request.timeout_handle.cancel()
        if request.future.done():
            return False
        if error is not None:
            request.future.set_exception(error)
        else:
            request.future.set_result(value)
        return True


__all__ = ["DEFAULT_MAX_PENDING", "PendingRequest", "CorrelationTable", "new_correlation_id"]
