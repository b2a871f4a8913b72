from __future__ import annotations

from typing import Iterable, Optional

from .channel import origin_of


class OriginPolicy:
    """Allow-list of origins a bridge endpoint will process messages from.

    Accepted origins are the app's own origin, the origin of the embedded
    frame's ``src`` and any explicitly configured extra origins.
    """

    def __init__(
        self,
        app_url: Optional[str],
        frame_src: Optional[str] = None,
        extra_origins: Iterable[str] = (),
    ) -> None:
        self.app_origin = origin_of(app_url)
        self.frame_origin = origin_of(frame_src)
        allowed = {self.app_origin, self.frame_origin}
        for item in extra_origins:
            allowed.add(origin_of(item))
        allowed.discard(None)
        self._allowed = frozenset(allowed)

    @property
    def allowed(self) -> frozenset[str]:
        return self._allowed

    def accepts(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        return origin_of(origin) in self._allowed

    def __repr__(self) -> str:
        return f"OriginPolicy(allowed={sorted(self._allowed)!r})"


__all__ = ["OriginPolicy"]
