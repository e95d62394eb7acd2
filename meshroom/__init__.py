"""
Public API:
- MeshRoom: factory returning a MeshRoomClient bound to a transport
- MeshRoomClient: joins a mesh room, connects to devices, pub/sub, fetch, media streams
- ClientOptions: timeouts, keepalive interval, device prefix, media codecs
- ClientState, Device: lifecycle states and the per-device record
- Response: reply returned by fetch
- Transport, Connection, MediaCall, RoomChannel: contracts a transport provider implements
- MemoryHub, MemoryTransport: in-process provider (tests, demos)
- Codecs, JSONCodec, MsgPackCodec: frame codecs
- matches, SubscriptionSet: topic filters with '+' and '#'
- errors: MeshRoomError and its subclasses
"""

# Client
from .client import MeshRoomClient
from .factory import MeshRoom
from .config import ClientOptions
from .message import ClientState, Device, RoomMessage
from .rpc import Response

# Transport contract & in-process provider
from .transport import Connection, MediaCall, RoomChannel, Transport
from .transports.memory import MemoryHub, MemoryTransport

# Codecs & topics
from .codecs import Codecs, JSONCodec, MsgPackCodec
from .topics import SubscriptionSet, matches

# Errors
from .errors import (
    BootstrapError,
    BootstrapTimeoutError,
    ClientClosedError,
    ConnectionClosedError,
    MeshRoomError,
    NoConnectionError,
    RequestTimeoutError,
    StreamingError,
    StreamingTimeoutError,
    TransportError,
    ValidationError,
)

__all__ = [
    "MeshRoom",
    "MeshRoomClient",
    "ClientOptions",
    "ClientState",
    "Device",
    "RoomMessage",
    "Response",
    "Transport",
    "Connection",
    "MediaCall",
    "RoomChannel",
    "MemoryHub",
    "MemoryTransport",
    "Codecs",
    "JSONCodec",
    "MsgPackCodec",
    "SubscriptionSet",
    "matches",
    "MeshRoomError",
    "ValidationError",
    "TransportError",
    "NoConnectionError",
    "ConnectionClosedError",
    "BootstrapError",
    "BootstrapTimeoutError",
    "RequestTimeoutError",
    "StreamingError",
    "StreamingTimeoutError",
    "ClientClosedError",
]

__version__ = "0.1.0"
