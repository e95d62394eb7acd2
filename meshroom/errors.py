from __future__ import annotations


class MeshRoomError(Exception):
    """Base class for every error raised by meshroom."""


class ValidationError(MeshRoomError, ValueError):
    """Bad argument at the call site (topic, payload, uuid path, room name, options)."""


class ConnectivityError(MeshRoomError):
    pass


class NoConnectionError(ConnectivityError):
    """No data connection (or peer id) is registered for a uuid."""

    def __init__(self, uuid: str, message: str | None = None):
        super().__init__(message or f"no connection found for {uuid}")
        self.uuid = uuid


class ConnectionClosedError(ConnectivityError):
    """The connection closed before the exchange on it finished."""


class TransportError(ConnectivityError):
    """Failure reported by the transport provider."""


class MeshTimeoutError(MeshRoomError, TimeoutError):
    pass


class BootstrapTimeoutError(MeshTimeoutError):
    pass


class RequestTimeoutError(MeshTimeoutError):
    def __init__(self, transaction_id: int):
        super().__init__(f"fetch timeout for {transaction_id}")
        self.transaction_id = transaction_id


class StreamingTimeoutError(MeshTimeoutError):
    pass


class BootstrapError(MeshRoomError):
    """Client startup aborted; the failing step is chained as __cause__."""


class StreamingError(MeshRoomError):
    pass


class StateError(MeshRoomError):
    """Illegal client state transition."""


class ClientClosedError(MeshRoomError):
    pass


class FrameDecodeError(MeshRoomError, ValueError):
    """An inbound frame could not be decoded."""


__all__ = [
    "MeshRoomError",
    "ValidationError",
    "ConnectivityError",
    "NoConnectionError",
    "ConnectionClosedError",
    "TransportError",
    "MeshTimeoutError",
    "BootstrapTimeoutError",
    "RequestTimeoutError",
    "StreamingTimeoutError",
    "BootstrapError",
    "StreamingError",
    "StateError",
    "ClientClosedError",
    "FrameDecodeError",
]
