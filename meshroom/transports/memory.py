
from __future__ import annotations
import asyncio
import itertools
import logging
from typing import Any, Callable, Dict, List, Optional

from ..errors import TransportError
from ..message import RoomMessage
from ..transport import Connection, Frame, MediaCall, RoomChannel, Transport

logger = logging.getLogger(__name__)


class MemoryHub:
    """In-process signaling server: peer directory plus mesh rooms.

    Every delivery is scheduled with loop.call_soon, so listeners see events
    on a later loop iteration, the same way a network transport would
    deliver them.
    """

    def __init__(self):
        self.peers: Dict[str, "MemoryTransport"] = {}
        self.rooms: Dict[str, List[str]] = {}
        self._ids = itertools.count(1)

    def attach(self, transport: "MemoryTransport", peer_id: Optional[str]) -> str:
        peer_id = peer_id or f"peer-{next(self._ids)}"
        if peer_id in self.peers:
            raise TransportError(f"peer id {peer_id} is already taken")
        self.peers[peer_id] = transport
        return peer_id

    def detach(self, peer_id: str) -> None:
        self.peers.pop(peer_id, None)
        for name, members in self.rooms.items():
            if peer_id in members:
                members.remove(peer_id)
                self._broadcast(name, RoomMessage.ROOM_USER_LEAVE, {"roomName": name, "src": peer_id})

    def peer(self, peer_id: str) -> Optional["MemoryTransport"]:
        return self.peers.get(peer_id)

    # ---- rooms ----
    def handle_room(self, src: str, message_type: str, payload: dict) -> None:
        name = payload.get("roomName")
        if not name:
            return
        members = self.rooms.setdefault(name, [])

        if message_type == RoomMessage.ROOM_JOIN:
            if src not in members:
                members.append(src)
            self._broadcast(name, RoomMessage.ROOM_USER_JOIN, {"roomName": name, "src": src})
        elif message_type == RoomMessage.ROOM_LEAVE:
            if src in members:
                members.remove(src)
                self._broadcast(name, RoomMessage.ROOM_USER_LEAVE, {"roomName": name, "src": src})
        elif message_type == RoomMessage.ROOM_GET_USERS:
            self._deliver(src, RoomMessage.ROOM_USERS, {"roomName": name, "userList": list(members)})
        else:
            logger.debug("hub ignoring room message %s from %s", message_type, src)

    def _broadcast(self, name: str, message_type: str, payload: dict) -> None:
        for member in list(self.rooms.get(name, [])):
            self._deliver(member, message_type, dict(payload))

    def _deliver(self, peer_id: str, message_type: str, payload: dict) -> None:
        target = self.peers.get(peer_id)
        if target is not None:
            _later(target.room.emit, message_type, payload)


class MemoryRoomChannel(RoomChannel):

    def __init__(self, transport: "MemoryTransport"):
        super().__init__()
        self._transport = transport

    def send(self, message_type: str, payload: dict) -> None:
        if self._transport.peer_id is None:
            raise TransportError("transport is not open")
        _later(self._transport.hub.handle_room, self._transport.peer_id, message_type, dict(payload))


class MemoryConnection(Connection):

    def __init__(self, owner: "MemoryTransport", peer_id: str, options: Optional[dict] = None):
        super().__init__()
        self.owner = owner
        self.options = dict(options or {})
        self._peer_id = peer_id
        self._remote: Optional[MemoryConnection] = None
        self._open = False
        self._closed = False

    @property
    def peer_id(self) -> str:
        return self._peer_id

    @property
    def open(self) -> bool:
        return self._open and not self._closed

    def send(self, data: Frame) -> None:
        if not self.open or self._remote is None:
            raise TransportError(f"connection to {self._peer_id} is not open")
        _later(self._remote._receive, data)

    def _receive(self, data: Frame) -> None:
        if self.open:
            self.emit("data", data)

    def _set_open(self) -> None:
        if not self._closed:
            self._open = True
            self.emit("open")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.owner._forget(self)
        _later(self.emit, "close")
        remote = self._remote
        if remote is not None:
            remote.close()


class MemoryMediaCall(MediaCall):

    def __init__(self, owner: "MemoryTransport", remote_id: str, stream: Any = None,
                 options: Optional[dict] = None):
        super().__init__()
        self.owner = owner
        self.stream = stream
        self.options = dict(options or {})
        self._remote_id = remote_id
        self._remote: Optional[MemoryMediaCall] = None
        self._closed = False
        self.answered = False

    @property
    def remote_id(self) -> str:
        return self._remote_id

    @property
    def closed(self) -> bool:
        return self._closed

    def answer(self, stream: Any = None) -> None:
        if self._closed or self._remote is None:
            raise TransportError("call is no longer active")
        self.answered = True
        self.stream = stream
        remote = self._remote
        # caller sees the answer as its stream event; callee gets the caller's media
        _later(remote._stream_event, stream)
        if remote.stream is not None:
            _later(self._stream_event, remote.stream)

    def _stream_event(self, stream: Any) -> None:
        if not self._closed:
            self.emit("stream", stream)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.owner._forget(self)
        _later(self.emit, "close")
        if self._remote is not None:
            self._remote.close()


class MemoryTransport(Transport):
    """Transport provider backed by a MemoryHub; peers share one event loop."""

    def __init__(self, hub: MemoryHub, peer_id: Optional[str] = None):
        super().__init__()
        self.hub = hub
        self._wanted_id = peer_id
        self._peer_id: Optional[str] = None
        self._room = MemoryRoomChannel(self)
        self._live: List[Any] = []
        self._starting = False
        self._attached: Optional[str] = None

    @property
    def peer_id(self) -> Optional[str]:
        return self._peer_id

    @property
    def room(self) -> MemoryRoomChannel:
        return self._room

    def start(self) -> None:
        if self._starting or self._peer_id is not None:
            return
        self._starting = True
        try:
            peer_id = self.hub.attach(self, self._wanted_id)
        except TransportError as ex:
            self._starting = False
            _later(self.emit, "error", ex)
            return
        self._attached = peer_id
        _later(self._opened, peer_id)

    def _opened(self, peer_id: str) -> None:
        if self._attached != peer_id:
            return  # stopped before the open landed
        self._peer_id = peer_id
        self._starting = False
        self.emit("open", peer_id)

    def stop(self) -> None:
        for obj in list(self._live):
            obj.close()
        if self._attached is not None:
            self.hub.detach(self._attached)
        self._attached = None
        self._peer_id = None
        self._starting = False

    def connect(self, peer_id: str, **options) -> MemoryConnection:
        conn = MemoryConnection(self, peer_id, options)
        self._live.append(conn)
        _later(self._link, conn)
        return conn

    def _link(self, conn: MemoryConnection) -> None:
        target = self.hub.peer(conn.peer_id)
        if target is None or target.peer_id is None or conn._closed:
            conn.emit("error", TransportError(f"peer {conn.peer_id} is unavailable"))
            return
        remote = MemoryConnection(target, self.peer_id)
        target._live.append(remote)
        conn._remote, remote._remote = remote, conn
        target.emit("connection", remote)
        remote._set_open()
        conn._set_open()

    def call(self, peer_id: str, stream: Any, **options) -> MemoryMediaCall:
        call = MemoryMediaCall(self, peer_id, stream, options)
        self._live.append(call)
        _later(self._ring, call)
        return call

    def _ring(self, call: MemoryMediaCall) -> None:
        target = self.hub.peer(call.remote_id)
        if target is None or target.peer_id is None or call.closed:
            call.emit("error", TransportError(f"peer {call.remote_id} is unavailable"))
            return
        remote = MemoryMediaCall(target, self.peer_id, None, call.options)
        target._live.append(remote)
        call._remote, remote._remote = remote, call
        target.emit("call", remote)

    def _forget(self, obj: Any) -> None:
        if obj in self._live:
            self._live.remove(obj)


def _later(fn: Callable[..., Any], *args: Any) -> None:
    asyncio.get_running_loop().call_soon(fn, *args)
