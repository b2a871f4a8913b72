from artstudio.bridge.models import (
    AddToCartResultPayload,
    BridgeMessage,
    MockupsPayload,
    make_message,
)
from artstudio.bridge.types import MessageType


def test_wire_form_is_flat_with_prefixed_type():
    message = make_message(
        MessageType.ADD_TO_CART,
        bridge_version="1.0.0",
        correlation_id="cart_abc",
        variantId=42,
        quantity=1,
    )
    wire = message.to_wire()
    assert wire == {
        "type": "AI_ART_STUDIO_ADD_TO_CART",
        "_bridgeVersion": "1.0.0",
        "correlationId": "cart_abc",
        "variantId": 42,
        "quantity": 1,
    }


def test_from_wire_ignores_foreign_messages():
    assert BridgeMessage.from_wire("hello") is None
    assert BridgeMessage.from_wire({"type": "webpackOk"}) is None
    assert BridgeMessage.from_wire({"data": 1}) is None


def test_from_wire_splits_envelope_from_payload():
    message = BridgeMessage.from_wire({
        "type": "AI_ART_STUDIO_BRIDGE_READY",
        "_bridgeVersion": "1.0.0",
        "heartbeat": 3,
    })
    assert message is not None
    assert message.type == MessageType.BRIDGE_READY
    assert message.bridge_version == "1.0.0"
    assert message.correlation_id is None
    assert message.payload == {"heartbeat": 3}


def test_result_payload_accepts_success_alias():
    assert AddToCartResultPayload.model_validate({"success": True}).ok is True
    assert AddToCartResultPayload.model_validate({"ok": False, "errorType": "cart_error"}).error_type == "cart_error"


def test_mockups_payload_accepts_numeric_product_id():
    payload = MockupsPayload.model_validate({"mockupUrls": ["https://cdn.example/a.png"], "productId": 123})
    assert payload.product_id == 123
    assert payload.mockup_urls == ["https://cdn.example/a.png"]
