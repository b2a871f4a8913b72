from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..exceptions import BridgeNotConnectedError
from .channel import ANY_ORIGIN, MessagePort
from .models import BridgeMessage, BridgeReadyPayload, PingPayload, make_message
from .types import BridgeConnectionState, MessageType

logger = logging.getLogger(__name__)

DEFAULT_HANDSHAKE_TIMEOUT = 8.0

class BridgeHandshake:
    """Connection state machine for one embedded frame.

    ``start()`` announces the frame with ``IFRAME_READY`` and waits for the
    host's ``BRIDGE_READY``. If the handshake timer fires first the bridge
    is degraded and host-dependent operations fail immediately. A late
    ``BRIDGE_READY`` still brings the connection up.
    """

    def __init__(
        self,
        port: MessagePort,
        *,
        bridge_version: str,
        timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
    ) -> None:
        self._port = port
        self.bridge_version = bridge_version
        self.timeout = timeout
        self._state = BridgeConnectionState.UNINITIALIZED
        self._timer: Optional[asyncio.TimerHandle] = None
        self._settled: Optional[asyncio.Event] = None
        self.host_version: Optional[str] = None
        self.last_heartbeat: Optional[float] = None
        self.reply_origin: str = ANY_ORIGIN

    @property
    def state(self) -> BridgeConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == BridgeConnectionState.READY

    def start(self) -> None:
        if self._state != BridgeConnectionState.UNINITIALIZED:
            return
        loop = asyncio.get_running_loop()
        self._settled = asyncio.Event()
        self._transition(BridgeConnectionState.AWAITING_HOST_READY)
        # Host origin is unknown until it answers, so the announcement is broadcast.
        self._send(make_message(MessageType.IFRAME_READY, bridge_version=self.bridge_version), ANY_ORIGIN)
        self._timer = loop.call_later(self.timeout, self._on_timeout)

    def handle_bridge_ready(self, message: BridgeMessage, origin: str) -> None:
        payload = BridgeReadyPayload.model_validate(message.payload)
        self.host_version = message.bridge_version or None
        self.last_heartbeat = payload.heartbeat
        self.reply_origin = origin or ANY_ORIGIN
        self._cancel_timer()
        if self._state != BridgeConnectionState.READY:
            self._transition(BridgeConnectionState.READY)
        self._send(make_message(MessageType.BRIDGE_ACK, bridge_version=self.bridge_version), self.reply_origin)

    def handle_ping(self, message: BridgeMessage, origin: str) -> None:
        payload = PingPayload.model_validate(message.payload)
        self._send(
            make_message(
                MessageType.PONG,
                bridge_version=self.bridge_version,
                pingTimestamp=payload.timestamp,
            ),
            origin or self.reply_origin,
        )

    async def wait_settled(self) -> BridgeConnectionState:
        """Wait until the handshake has either succeeded or degraded."""
        if self._state in (BridgeConnectionState.READY, BridgeConnectionState.DEGRADED):
            return self._state
        if self._settled is None:
            return self._state
        await self._settled.wait()
        return self._state

    def require_ready(self) -> None:
        if self._state != BridgeConnectionState.READY:
            raise BridgeNotConnectedError()

    def stop(self) -> None:
        """Cancel the handshake; anything still waiting on it is released as Degraded."""
        self._cancel_timer()
        if self._state in (BridgeConnectionState.UNINITIALIZED, BridgeConnectionState.AWAITING_HOST_READY):
            self._transition(BridgeConnectionState.DEGRADED)

    def _on_timeout(self) -> None:
        self._timer = None
        if self._state != BridgeConnectionState.AWAITING_HOST_READY:
            return
        logger.warning("Bridge handshake timed out after %.1fs; host never sent BRIDGE_READY", self.timeout)
        self._transition(BridgeConnectionState.DEGRADED)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _transition(self, new_state: BridgeConnectionState) -> None:
        previous = self._state
        self._state = new_state
        logger.debug("Bridge state %s -> %s", previous.value, new_state.value)
        if new_state in (BridgeConnectionState.READY, BridgeConnectionState.DEGRADED) and self._settled is not None:
            self._settled.set()

    def _send(self, message: BridgeMessage, target_origin: str) -> None:
        self._port.post_message(message.to_wire(), target_origin)


__all__ = ["DEFAULT_HANDSHAKE_TIMEOUT", "BridgeHandshake"]
