from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ..config import get_settings
from ..exceptions import (
    BridgeNotConnectedError,
    PendingRequestEvictedError,
    TrackedError,
)
from ..log import log_bridge_drop
from ..services.references import require_hosted_url
from .channel import MessageEvent, MessagePort
from .correlation import CorrelationTable, new_correlation_id
from .handshake import BridgeHandshake
from .models import AddToCartResultPayload, BridgeMessage, make_message
from .origins import OriginPolicy
from .types import (
    CLIENT_INBOUND_TYPES,
    RESULT_TYPES,
    BridgeConnectionState,
    MessageType,
)

logger = logging.getLogger(__name__)

ARTWORK_URL_PROPERTY = "_artwork_url"
DESIGN_ID_PROPERTY = "_design_id"
LABEL_PROPERTY = "Artwork"


@dataclass
class HostActionResult:
    ok: bool
    correlation_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class CartResult:
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    cart: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None


class BridgeClient:
    """Frame-side end of the bridge.

    Every instance owns its own handshake and pending-request table so that
    several widgets embedded in one page never share connection state.
    """

    def __init__(
        self,
        port: MessagePort,
        *,
        app_url: Optional[str] = None,
        frame_src: Optional[str] = None,
        host_origins: Iterable[str] = (),
        bridge_version: Optional[str] = None,
        handshake_timeout: Optional[float] = None,
        request_timeout: Optional[float] = None,
        max_pending: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._port = port
        self.bridge_version = bridge_version or settings.bridge_version
        self.request_timeout = request_timeout if request_timeout is not None else settings.bridge_request_timeout_seconds
        self.origins = OriginPolicy(
            app_url if app_url is not None else settings.app_url,
            frame_src,
            [*settings.bridge_allowed_origins, *host_origins],
        )
        self.handshake = BridgeHandshake(
            port,
            bridge_version=self.bridge_version,
            timeout=handshake_timeout if handshake_timeout is not None else settings.bridge_handshake_timeout_seconds,
        )
        self.pending = CorrelationTable(
            max_pending=max_pending if max_pending is not None else settings.bridge_max_pending_requests
        )
        self._closed = False

    @property
    def state(self) -> BridgeConnectionState:
        return self.handshake.state

    def start(self) -> None:
        self.handshake.start()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.handshake.stop()
        self.pending.reject_all(
            lambda cid: PendingRequestEvictedError("Bridge client closed", correlation_id=cid)
        )

    def receive(self, event: MessageEvent) -> None:
        """Entry point for every message delivered to the frame window."""
        message = BridgeMessage.from_wire(event.data)
        if message is None:
            return
        if not self.origins.accepts(event.origin):
            log_bridge_drop("client", event.origin, message.type.value, "origin_rejected")
            return
        if message.type not in CLIENT_INBOUND_TYPES:
            log_bridge_drop("client", event.origin, message.type.value, "unexpected_type")
            return
        try:
            if message.type == MessageType.BRIDGE_READY:
                self.handshake.handle_bridge_ready(message, event.origin)
            elif message.type == MessageType.PING:
                self.handshake.handle_ping(message, event.origin)
            elif message.type == MessageType.ADD_TO_CART_RESULT:
                self._handle_result(message)
        except ValidationError as exc:
            logger.warning("Malformed %s from %s: %s", message.type.value, event.origin, exc)

    async def request_host_action(
        self,
        message_type: MessageType,
        payload: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> HostActionResult:
        """Send a correlated request to the host and wait for its result."""
        if message_type not in RESULT_TYPES:
            raise ValueError(f"{message_type.value} is not a correlated host action")
        try:
            await self._ensure_connected()
        except TrackedError as exc:
            return HostActionResult(ok=False, error=str(exc), error_type=exc.error_type)

        correlation_id = new_correlation_id("cart" if message_type == MessageType.ADD_TO_CART else "req")
        request = self.pending.register(
            correlation_id,
            timeout if timeout is not None else self.request_timeout,
        )
        message = make_message(
            message_type,
            bridge_version=self.bridge_version,
            correlation_id=correlation_id,
            **(payload or {}),
        )
        self._port.post_message(message.to_wire(), self.handshake.reply_origin)

        try:
            result: BridgeMessage = await request.future
        except TrackedError as exc:
            return HostActionResult(
                ok=False,
                correlation_id=correlation_id,
                error=str(exc),
                error_type=exc.error_type,
            )
        except asyncio.CancelledError:
            self.pending.discard(correlation_id)
            raise

        try:
            parsed = AddToCartResultPayload.model_validate(result.payload)
        except ValidationError as exc:
            logger.warning("Malformed %s for %s: %s", result.type.value, correlation_id, exc)
            return HostActionResult(
                ok=False,
                correlation_id=correlation_id,
                error="Malformed response from the storefront",
                error_type="bridge_protocol",
            )
        return HostActionResult(
            ok=parsed.ok,
            correlation_id=correlation_id,
            payload=dict(result.payload),
            error=parsed.error if not parsed.ok else None,
            error_type=parsed.error_type if not parsed.ok else None,
        )

    async def add_to_cart(
        self,
        variant_id: Union[int, str],
        *,
        artwork_url: str,
        design_id: str,
        quantity: int = 1,
        label: str = "Custom AI Design",
        extra_properties: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> CartResult:
        try:
            durable_url = require_hosted_url(artwork_url, field="artworkUrl")
        except TrackedError as exc:
            return CartResult(success=False, error=str(exc), error_type=exc.error_type)

        properties: Dict[str, Any] = dict(extra_properties or {})
        properties.update({
            ARTWORK_URL_PROPERTY: durable_url,
            DESIGN_ID_PROPERTY: str(design_id),
            LABEL_PROPERTY: label,
        })
        result = await self.request_host_action(
            MessageType.ADD_TO_CART,
            {"variantId": variant_id, "quantity": quantity, "properties": properties},
            timeout=timeout,
        )
        return CartResult(
            success=result.ok,
            error=result.error,
            error_type=result.error_type,
            cart=result.payload.get("cart") if result.ok else None,
            correlation_id=result.correlation_id,
        )

    def send_resize(self, height: float) -> None:
        self._post(MessageType.RESIZE, height=height)

    def send_mockups(
        self,
        mockup_urls: List[str],
        *,
        product_id: Optional[Union[int, str]] = None,
        product_handle: Optional[str] = None,
    ) -> None:
        urls = [require_hosted_url(url, field="mockupUrls") for url in mockup_urls]
        if not urls:
            return
        payload: Dict[str, Any] = {"mockupUrls": urls}
        if product_id is not None:
            payload["productId"] = product_id
        if product_handle:
            payload["productHandle"] = product_handle
        self._post(MessageType.MOCKUPS, **payload)

    async def _ensure_connected(self) -> None:
        if self._closed:
            raise BridgeNotConnectedError("The storefront bridge has been closed.")
        state = self.handshake.state
        if state == BridgeConnectionState.AWAITING_HOST_READY:
            state = await self.handshake.wait_settled()
        if state != BridgeConnectionState.READY:
            raise BridgeNotConnectedError()

    def _handle_result(self, message: BridgeMessage) -> None:
        if not self.pending.resolve(message.correlation_id, message):
            # Late, duplicate or foreign result; nothing is waiting for it.
            log_bridge_drop("client", "", message.type.value, "correlation_mismatch")

    def _post(self, message_type: MessageType, **payload: Any) -> None:
        message = make_message(message_type, bridge_version=self.bridge_version, **payload)
        self._port.post_message(message.to_wire(), self.handshake.reply_origin)


__all__ = [
    "ARTWORK_URL_PROPERTY",
    "DESIGN_ID_PROPERTY",
    "LABEL_PROPERTY",
    "HostActionResult",
    "CartResult",
    "BridgeClient",
]
