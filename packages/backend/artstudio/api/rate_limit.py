"""Per-shop quotas for the generation and mockup routes.

Each shop gets a fixed window; requests beyond the limit are refused with a
429 until the window resets. Requests that name no shop are counted against
the client address instead.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from ..db.models import normalize_shop_domain
from ..exceptions import RateLimitedError


@dataclass
class _Window:
    count: int
    reset_at: float


class ShopRateLimiter:
    def __init__(self, limit: int, window_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = max(1, int(limit))
        self.window_seconds = max(1.0, float(window_seconds))
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str) -> None:
        """Count one request for ``key``; raises RateLimitedError once the window is used up."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            window = _Window(count=0, reset_at=now + self.window_seconds)
            self._windows[key] = window
        if window.count >= self.limit:
            raise RateLimitedError(retry_after=max(1, math.ceil(window.reset_at - now)))
        window.count += 1


def client_key(request: Request, shop: Optional[str]) -> str:
    domain = normalize_shop_domain(shop or "")
    if domain:
        return f"shop:{domain}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def get_generation_limiter(request: Request) -> ShopRateLimiter:
    return request.app.state.generation_limiter


def get_mockup_limiter(request: Request) -> ShopRateLimiter:
    return request.app.state.mockup_limiter


__all__ = [
    "ShopRateLimiter",
    "client_key",
    "get_generation_limiter",
    "get_mockup_limiter",
]
