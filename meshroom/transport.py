from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from .events import EventEmitter

Frame = Union[str, bytes]


class Connection(EventEmitter, ABC):
    """
    Point-to-point data channel to one peer.
    Events: "open", "data"(frame), "close", "error"(exc)
    """

    @property
    @abstractmethod
    def peer_id(self) -> str:
        """Transport-level id of the remote end."""
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def send(self, data: Frame) -> None:
        """Send one frame; best effort, no delivery guarantee."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class MediaCall(EventEmitter, ABC):
    """
    Media session with one peer.
    Events: "stream"(stream), "error"(exc), "close"
    """

    @property
    @abstractmethod
    def remote_id(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def answer(self, stream: Any = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class RoomChannel(EventEmitter, ABC):
    """Room-level signaling. Events are named by RoomMessage values."""

    @abstractmethod
    def send(self, message_type: str, payload: dict) -> None:
        raise NotImplementedError


class Transport(EventEmitter, ABC):
    """
    Transport provider contract.
    Events: "open"(peer_id), "call"(MediaCall), "connection"(Connection), "error"(exc)
    """

    @property
    @abstractmethod
    def peer_id(self) -> Optional[str]:
        """Local peer id; None until the transport has opened."""
        raise NotImplementedError

    @property
    @abstractmethod
    def room(self) -> RoomChannel:
        raise NotImplementedError

    @abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def connect(self, peer_id: str, **options) -> Connection:
        """Open a data connection to a peer; "open" fires on the returned object."""
        raise NotImplementedError

    @abstractmethod
    def call(self, peer_id: str, stream: Any, **options) -> MediaCall:
        """Originate a media call carrying a local stream."""
        raise NotImplementedError
