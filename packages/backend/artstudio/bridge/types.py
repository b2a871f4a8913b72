from enum import Enum


WIRE_PREFIX = "AI_ART_STUDIO_"


class MessageType(str, Enum):
    # Handshake
    IFRAME_READY = "AI_ART_STUDIO_IFRAME_READY"
    BRIDGE_READY = "AI_ART_STUDIO_BRIDGE_READY"
    BRIDGE_ACK = "AI_ART_STUDIO_BRIDGE_ACK"

    # Liveness
    PING = "AI_ART_STUDIO_PING"
    PONG = "AI_ART_STUDIO_PONG"

    # Correlated cart RPC
    ADD_TO_CART = "AI_ART_STUDIO_ADD_TO_CART"
    ADD_TO_CART_RESULT = "AI_ART_STUDIO_ADD_TO_CART_RESULT"

    # Fire-and-forget UI updates
    RESIZE = "AI_ART_STUDIO_RESIZE"
    MOCKUPS = "AI_ART_STUDIO_MOCKUPS"


class BridgeConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_HOST_READY = "awaiting_host_ready"
    READY = "ready"
    DEGRADED = "degraded"


# Request type -> result type for correlated host actions
RESULT_TYPES = {
    MessageType.ADD_TO_CART: MessageType.ADD_TO_CART_RESULT,
}

# Types the iframe client accepts from the host
CLIENT_INBOUND_TYPES = {
    MessageType.BRIDGE_READY,
    MessageType.PING,
    MessageType.ADD_TO_CART_RESULT,
}

# Types the host loader accepts from the iframe
HOST_INBOUND_TYPES = {
    MessageType.IFRAME_READY,
    MessageType.BRIDGE_ACK,
    MessageType.PONG,
    MessageType.ADD_TO_CART,
    MessageType.RESIZE,
    MessageType.MOCKUPS,
}
