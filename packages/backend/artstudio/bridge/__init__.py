from .channel import ANY_ORIGIN, MessageEvent, MessagePort, RecordingPort, WindowEndpoint, connect_windows, origin_of
from .client import BridgeClient, CartResult, HostActionResult
from .correlation import CorrelationTable, PendingRequest, new_correlation_id
from .handshake import BridgeHandshake
from .models import BridgeMessage, make_message
from .origins import OriginPolicy
from .types import BridgeConnectionState, MessageType

__all__ = [
    "ANY_ORIGIN",
    "MessageEvent",
    "MessagePort",
    "RecordingPort",
    "WindowEndpoint",
    "connect_windows",
    "origin_of",
    "BridgeClient",
    "CartResult",
    "HostActionResult",
    "CorrelationTable",
    "PendingRequest",
    "new_correlation_id",
    "BridgeHandshake",
    "BridgeMessage",
    "make_message",
    "OriginPolicy",
    "BridgeConnectionState",
    "MessageType",
]
