from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .types import MessageType

DEFAULT_BRIDGE_VERSION = "1.0.0"

_ENVELOPE_KEYS = {"type", "_bridgeVersion", "bridgeVersion", "correlationId"}


class BridgeMessage(BaseModel):
    """Envelope for one message on the bridge.

    On the wire the envelope is flattened: ``type``, ``_bridgeVersion`` and
    ``correlationId`` sit next to the payload fields in a single object.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: MessageType
    bridge_version: str = Field(default=DEFAULT_BRIDGE_VERSION, alias="_bridgeVersion")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value, "_bridgeVersion": self.bridge_version}
        if self.correlation_id is not None:
            data["correlationId"] = self.correlation_id
        for key, value in self.payload.items():
            if key in _ENVELOPE_KEYS:
                continue
            data[key] = copy.deepcopy(value)
        return data

    @classmethod
    def from_wire(cls, data: Any) -> Optional["BridgeMessage"]:
        """Parse a received object; returns None for anything that is not ours."""
        if not isinstance(data, dict):
            return None
        raw_type = data.get("type")
        if not isinstance(raw_type, str):
            return None
        try:
            message_type = MessageType(raw_type)
        except ValueError:
            return None
        version = data.get("_bridgeVersion") or data.get("bridgeVersion") or ""
        correlation_id = data.get("correlationId")
        if correlation_id is not None and not isinstance(correlation_id, str):
            correlation_id = str(correlation_id)
        payload = {key: value for key, value in data.items() if key not in _ENVELOPE_KEYS}
        return cls(
            type=message_type,
            bridge_version=str(version),
            correlation_id=correlation_id,
            payload=payload,
        )


def make_message(
    message_type: MessageType,
    *,
    bridge_version: str = DEFAULT_BRIDGE_VERSION,
    correlation_id: Optional[str] = None,
    **payload: Any,
) -> BridgeMessage:
    return BridgeMessage(
        type=message_type,
        bridge_version=bridge_version,
        correlation_id=correlation_id,
        payload=payload,
    )


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BridgeReadyPayload(_Payload):
    heartbeat: float = 0


class PingPayload(_Payload):
    timestamp: Union[int, float]


class PongPayload(_Payload):
    ping_timestamp: Union[int, float] = Field(alias="pingTimestamp")


class AddToCartPayload(_Payload):
    variant_id: Union[int, str] = Field(alias="variantId")
    quantity: int = Field(default=1, ge=1)
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("variant_id")
    @classmethod
    def _variant_present(cls, value: Union[int, str]) -> Union[int, str]:
        if isinstance(value, str) and not value.strip():
            raise ValueError("variantId is required")
        return value


class AddToCartResultPayload(_Payload):
    ok: bool = Field(default=False, validation_alias=AliasChoices("ok", "success"))
    error: Optional[str] = None
    error_type: Optional[str] = Field(default=None, alias="errorType")
    cart: Optional[Dict[str, Any]] = None


class ResizePayload(_Payload):
    height: float = Field(ge=0)


class MockupsPayload(_Payload):
    mockup_urls: List[str] = Field(default_factory=list, alias="mockupUrls")
    product_id: Optional[Union[int, str]] = Field(default=None, alias="productId")
    product_handle: Optional[str] = Field(default=None, alias="productHandle")


__all__ = [
    "DEFAULT_BRIDGE_VERSION",
    "BridgeMessage",
    "make_message",
    "BridgeReadyPayload",
    "PingPayload",
    "PongPayload",
    "AddToCartPayload",
    "AddToCartResultPayload",
    "ResizePayload",
    "MockupsPayload",
]
