from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Union

import httpx

from ..exceptions import CartMutationError

logger = logging.getLogger(__name__)


class CartApi(Protocol):
    async def add_item(
        self,
        variant_id: Union[int, str],
        quantity: int,
        properties: Dict[str, Any],
    ) -> Dict[str, Any]: ...


class StorefrontCart:
    """The host storefront's own AJAX cart (``/cart/add.js``)."""

    def __init__(
        self,
        storefront_url: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.storefront_url = storefront_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def add_item(
        self,
        variant_id: Union[int, str],
        quantity: int,
        properties: Dict[str, Any],
    ) -> Dict[str, Any]:
        body = {
            "items": [
                {
                    "id": variant_id,
                    "quantity": quantity,
                    "properties": properties,
                }
            ]
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.storefront_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/cart/add.js",
                    json=body,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("Cart add request failed: %s", exc)
            raise CartMutationError(f"Failed to reach the cart: {exc}") from exc

        if response.status_code >= 400:
            description = _error_description(response)
            raise CartMutationError(description, status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise CartMutationError("Cart returned an invalid response", status_code=response.status_code) from exc


def _error_description(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("description", "message", "error"):
            if data.get(key):
                return str(data[key])
    return f"Cart rejected the item ({response.status_code})"


__all__ = ["CartApi", "StorefrontCart"]
