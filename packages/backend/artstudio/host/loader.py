from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, Optional, Set
from urllib.parse import parse_qs, urlencode, urljoin, urlsplit

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from ..bridge.channel import MessageEvent, MessagePort, origin_of
from ..bridge.client import ARTWORK_URL_PROPERTY, DESIGN_ID_PROPERTY, LABEL_PROPERTY
from ..bridge.models import (
    AddToCartPayload,
    BridgeMessage,
    MockupsPayload,
    PongPayload,
    ResizePayload,
    make_message,
)
from ..bridge.origins import OriginPolicy
from ..bridge.types import HOST_INBOUND_TYPES, MessageType
from ..config import get_settings
from ..exceptions import InvalidReferenceError, TrackedError
from ..log import log_bridge_drop
from ..services.references import filter_hosted_urls, require_hosted_url
from .cart import CartApi
from .gallery import GalleryUpdate, replace_gallery_images

logger = logging.getLogger(__name__)

CONTAINER_ID_PREFIX = "ai-art-studio-container-"
EMBED_PATH = "/embed/design"
DEFAULT_LABEL = "Custom AI Design"
NOT_CONFIGURED_NOTICE = (
    "This product has not been configured for the design studio. "
    "Please publish it from the AI Art Studio admin."
)


def _set_style_property(tag: Tag, name: str, value: str) -> None:
    declarations = []
    for part in str(tag.get("style") or "").split(";"):
        if not part.strip():
            continue
        key = part.split(":", 1)[0].strip().lower()
        if key == name:
            continue
        declarations.append(part.strip())
    declarations.append(f"{name}: {value}")
    tag["style"] = "; ".join(declarations) + ";"


class HostLoader:
    """Host-page side of the bridge for one design studio container."""

    def __init__(
        self,
        document: BeautifulSoup,
        container: Tag,
        *,
        cart: CartApi,
        page_url: Optional[str] = None,
        bridge_version: Optional[str] = None,
        resize_margin: Optional[int] = None,
        extra_origins: Iterable[str] = (),
    ) -> None:
        settings = get_settings()
        self.document = document
        self.container = container
        self.cart = cart
        self.page_url = page_url
        self.bridge_version = bridge_version or settings.bridge_version
        self.resize_margin = resize_margin if resize_margin is not None else settings.resize_margin_px
        self._extra_origins = [*settings.bridge_allowed_origins, *extra_origins]

        self.app_url: Optional[str] = (container.get("data-app-url") or "").strip() or None
        self.iframe: Optional[Tag] = None
        self.frame_src: Optional[str] = None
        self.origins = OriginPolicy(self.app_url, None, self._extra_origins)
        self._port: Optional[MessagePort] = None
        self._tasks: Set[asyncio.Task] = set()
        self._ready_sent = 0

        self.frame_connected = False
        self.last_pong: Optional[float] = None
        self.last_gallery_update: Optional[GalleryUpdate] = None

    @property
    def block_id(self) -> str:
        container_id = str(self.container.get("id") or "")
        return container_id[len(CONTAINER_ID_PREFIX):] if container_id.startswith(CONTAINER_ID_PREFIX) else container_id

    @property
    def frame_origin(self) -> Optional[str]:
        return origin_of(self.frame_src)

    def mount(self) -> Optional[Tag]:
        """Create the design studio iframe inside the container."""
        if not self.app_url:
            notice = self.document.new_tag("div", attrs={"class": "ai-art-studio__error"})
            notice.string = NOT_CONFIGURED_NOTICE
            self.container.clear()
            self.container.append(notice)
            logger.warning("Design studio block %s has no app url; not mounted", self.block_id)
            return None

        self.frame_src = f"{self.app_url.rstrip('/')}{EMBED_PATH}?{urlencode(self._embed_params())}"
        iframe = self.document.new_tag(
            "iframe",
            attrs={
                "src": self.frame_src,
                "allow": "clipboard-write",
                "title": "AI Art Design Studio",
            },
        )
        loading = self.container.select_one(".ai-art-studio__loading")
        if loading is not None:
            loading.decompose()
        self.container.append(iframe)
        self.iframe = iframe
        self.origins = OriginPolicy(self.app_url, self.frame_src, self._extra_origins)
        logger.info("Design studio block %s mounted; accepted origins %s", self.block_id, sorted(self.origins.allowed))
        return iframe

    def attach(self, port: MessagePort) -> None:
        """Use ``port`` to post messages into the iframe."""
        self._port = port

    def announce_ready(self) -> None:
        self._ready_sent += 1
        self._post(MessageType.BRIDGE_READY, heartbeat=self._ready_sent)

    def ping(self) -> float:
        timestamp = time.time() * 1000
        self._post(MessageType.PING, timestamp=timestamp)
        return timestamp

    def receive(self, event: MessageEvent) -> None:
        """Listener for messages delivered to the host window."""
        task = asyncio.get_running_loop().create_task(self.handle_message(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle_message(self, event: MessageEvent) -> None:
        message = BridgeMessage.from_wire(event.data)
        if message is None:
            return
        if not self.origins.accepts(event.origin):
            log_bridge_drop("host", event.origin, message.type.value, "origin_rejected")
            return
        if message.type not in HOST_INBOUND_TYPES:
            log_bridge_drop("host", event.origin, message.type.value, "unexpected_type")
            return

        if message.type == MessageType.ADD_TO_CART:
            await self._handle_add_to_cart(message)
            return
        try:
            if message.type == MessageType.IFRAME_READY:
                self.announce_ready()
            elif message.type == MessageType.BRIDGE_ACK:
                self.frame_connected = True
            elif message.type == MessageType.PONG:
                self.last_pong = PongPayload.model_validate(message.payload).ping_timestamp
            elif message.type == MessageType.RESIZE:
                self.resize(ResizePayload.model_validate(message.payload).height)
            elif message.type == MessageType.MOCKUPS:
                self.show_mockups(MockupsPayload.model_validate(message.payload).mockup_urls)
        except ValidationError as exc:
            logger.warning("Malformed %s from %s: %s", message.type.value, event.origin, exc)

    def resize(self, height: float) -> None:
        _set_style_property(self.container, "height", f"{int(round(height)) + self.resize_margin}px")

    def show_mockups(self, mockup_urls: list[str]) -> Optional[GalleryUpdate]:
        if not mockup_urls:
            return None
        accepted, rejected = filter_hosted_urls(mockup_urls)
        if rejected:
            logger.warning("Ignoring %s non-hosted mockup reference(s)", len(rejected))
        if not accepted:
            return None
        urls = [self._absolute(url) for url in accepted]
        update = replace_gallery_images(self.document, urls, container=self.container)
        update.rejected_urls = rejected
        if update.fallback_only:
            logger.info("No product gallery matched on block %s; mockups shown in the preview panel only", self.block_id)
        self.last_gallery_update = update
        return update

    def line_item_properties(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and normalize the properties persisted on the cart line."""
        artwork_url = properties.get(ARTWORK_URL_PROPERTY) or properties.get("artworkUrl")
        design_id = properties.get(DESIGN_ID_PROPERTY) or properties.get("designId")
        durable = require_hosted_url(artwork_url, field="artworkUrl")
        if not design_id:
            raise InvalidReferenceError("A design id is required to add artwork to the cart")
        normalized = {
            key: value
            for key, value in properties.items()
            if key not in {"artworkUrl", "designId"}
        }
        normalized[ARTWORK_URL_PROPERTY] = self._absolute(durable)
        normalized[DESIGN_ID_PROPERTY] = str(design_id)
        normalized[LABEL_PROPERTY] = str(properties.get(LABEL_PROPERTY) or DEFAULT_LABEL)
        return normalized

    async def _handle_add_to_cart(self, message: BridgeMessage) -> None:
        correlation_id = message.correlation_id
        try:
            payload = AddToCartPayload.model_validate(message.payload)
            properties = self.line_item_properties(payload.properties)
            cart = await self.cart.add_item(payload.variant_id, payload.quantity, properties)
        except ValidationError as exc:
            logger.warning("Malformed add-to-cart request %s: %s", correlation_id, exc)
            self._post_result(correlation_id, ok=False, error="Invalid add-to-cart request", errorType="bridge_protocol")
            return
        except TrackedError as exc:
            logger.warning("Add to cart %s failed: %s", correlation_id, exc)
            self._post_result(correlation_id, ok=False, error=str(exc), errorType=exc.error_type)
            return
        except Exception:
            logger.exception("Cart adapter failed for add-to-cart request %s", correlation_id)
            self._post_result(correlation_id, ok=False, error="Could not add the design to the cart", errorType="cart_error")
            return
        self._post_result(correlation_id, ok=True, cart=cart)
        self._open_cart_drawer()

    def _post_result(self, correlation_id: Optional[str], **payload: Any) -> None:
        if not correlation_id:
            return
        self._post(MessageType.ADD_TO_CART_RESULT, correlation_id=correlation_id, **payload)

    def _open_cart_drawer(self) -> None:
        if self.page_url and urlsplit(self.page_url).path == "/cart":
            return
        drawer = self.document.select_one("[data-cart-drawer]")
        if drawer is None:
            return
        classes = drawer.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        if "is-active" not in classes:
            drawer["class"] = [*classes, "is-active"]

    def _post(self, message_type: MessageType, *, correlation_id: Optional[str] = None, **payload: Any) -> None:
        if self._port is None:
            logger.debug("No frame attached; dropping %s", message_type.value)
            return
        message = make_message(
            message_type,
            bridge_version=self.bridge_version,
            correlation_id=correlation_id,
            **payload,
        )
        self._port.post_message(message.to_wire(), self.frame_origin or self.app_url or "*")

    def _absolute(self, url: str) -> str:
        if url.startswith("/") and self.app_url:
            return urljoin(self.app_url.rstrip("/") + "/", url.lstrip("/"))
        return url

    def _embed_params(self) -> Dict[str, str]:
        data = self.container
        product_title = str(data.get("data-product-title") or "")
        shop_domain = str(data.get("data-shop-domain") or "")
        if not shop_domain and self.page_url:
            shop_domain = urlsplit(self.page_url).hostname or ""
        params: Dict[str, str] = {
            "embedded": "true",
            "shopify": "true",
            "shop": shop_domain,
            "productTypeId": str(data.get("data-product-type-id") or "1"),
            "productId": str(data.get("data-product-id") or ""),
            "productHandle": str(data.get("data-product-handle") or ""),
            "productTitle": product_title,
            "displayName": str(data.get("data-display-name") or product_title),
            "showPresets": "true" if str(data.get("data-show-presets") or "") == "true" else "false",
            "selectedVariant": str(data.get("data-selected-variant") or ""),
        }
        customer_id = str(data.get("data-customer-id") or "")
        if customer_id:
            params["customerId"] = customer_id
            params["customerEmail"] = str(data.get("data-customer-email") or "")
            params["customerName"] = str(data.get("data-customer-name") or "")
        if self.page_url:
            shared = parse_qs(urlsplit(self.page_url).query).get("sharedDesignId")
            if shared:
                params["sharedDesignId"] = shared[0]
        return params


def find_containers(document: BeautifulSoup) -> list[Tag]:
    return document.select(f'[id^="{CONTAINER_ID_PREFIX}"]')


__all__ = ["CONTAINER_ID_PREFIX", "EMBED_PATH", "HostLoader", "find_containers"]
