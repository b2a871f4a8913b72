"""In-process ``postMessage`` transport between two documents.

Each :class:`WindowEndpoint` stands for one browsing context (the host page
or the embedded frame). Posting copies the data through JSON (the
structured-clone boundary), stamps the sender's origin, filters on the
target origin and schedules delivery on the running event loop, so a
sender never observes its message being handled synchronously.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

ANY_ORIGIN = "*"


@dataclass(frozen=True)
class MessageEvent:
    data: Any
    origin: str
    source: Optional["WindowEndpoint"] = None


MessageListener = Callable[[MessageEvent], None]


class MessagePort(Protocol):
    def post_message(self, data: dict[str, Any], target_origin: str = ANY_ORIGIN) -> None: ...


def origin_of(url: Optional[str]) -> Optional[str]:
    """Return ``scheme://host[:port]`` for an absolute URL, else None."""
    if not url:
        return None
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


class WindowEndpoint:
    def __init__(self, origin: str, *, name: str = "") -> None:
        resolved = origin_of(origin) or origin
        self.origin = resolved
        self.name = name or resolved
        self.peer: Optional[WindowEndpoint] = None
        self._listeners: List[MessageListener] = []

    def add_listener(self, listener: MessageListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post_message(self, data: dict[str, Any], target_origin: str = ANY_ORIGIN) -> None:
        """Deliver ``data`` to the peer window, asynchronously."""
        peer = self.peer
        if peer is None:
            logger.debug("post_message from %s with no peer attached", self.name)
            return
        if target_origin != ANY_ORIGIN and origin_of(target_origin) != peer.origin:
            logger.debug(
                "post_message target origin %s does not match %s; dropped",
                target_origin,
                peer.origin,
            )
            return
        cloned = json.loads(json.dumps(data))
        event = MessageEvent(data=cloned, origin=self.origin, source=self)
        loop = asyncio.get_running_loop()
        loop.call_soon(peer.dispatch, event)

    def dispatch(self, event: MessageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Message listener on %s failed", self.name)


def connect_windows(host_origin: str, frame_origin: str) -> tuple[WindowEndpoint, WindowEndpoint]:
    """Create a host window and a frame window wired to each other."""
    host = WindowEndpoint(host_origin, name="host")
    frame = WindowEndpoint(frame_origin, name="frame")
    host.peer = frame
    frame.peer = host
    return host, frame


class RecordingPort:
    """Port that only records what was posted; useful when no peer exists."""

    def __init__(self) -> None:
        self.sent: List[tuple[dict[str, Any], str]] = []

    def post_message(self, data: dict[str, Any], target_origin: str = ANY_ORIGIN) -> None:
        self.sent.append((json.loads(json.dumps(data)), target_origin))

    def of_type(self, message_type: str) -> List[dict[str, Any]]:
        return [data for data, _ in self.sent if data.get("type") == message_type]


__all__ = [
    "ANY_ORIGIN",
    "MessageEvent",
    "MessageListener",
    "MessagePort",
    "WindowEndpoint",
    "RecordingPort",
    "connect_windows",
    "origin_of",
]
