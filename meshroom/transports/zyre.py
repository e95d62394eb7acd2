
from __future__ import annotations
import asyncio
import json
import logging
import threading
import uuid as _uuid
from typing import Any, Dict, Optional, Set, Tuple

try:
    from zyre import Zyre, ZyreEvent
except Exception as e:
    raise RuntimeError("Zyre Python bindings are required. Error: %r" % (e,))

from ..errors import TransportError
from ..message import RoomMessage
from ..transport import Connection, Frame, MediaCall, RoomChannel, Transport

logger = logging.getLogger(__name__)


class ZyreTransport(Transport):
    """Transport over Zyre.

    Mapping:
    - peer id -> Zyre node *name*. Zyre maintains name<->uuid mapping from ENTER events.
    - room -> Zyre group. JOIN/LEAVE/EXIT events become ROOM_USER_JOIN/ROOM_USER_LEAVE.
    - data connection -> WHISPER frames to one peer.
    - media calls are not available.

    Frames on the wire (Zmsg):
    [0] JSON-encoded headers {"kind": "data", "binary": bool}
    [1] payload bytes

    The receive loop runs on its own thread; every event is handed to the
    asyncio loop that called start().
    """

    def __init__(self, peer_id: Optional[str] = None, **kwargs):
        super().__init__()
        self.name = peer_id or f"peer-{_uuid.uuid4().hex[:8]}"
        self.node = None
        self._peer_id: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._rx_thread: Optional[threading.Thread] = None
        self._room = ZyreRoomChannel(self)

        self._peers_by_uuid: Dict[str, str] = {}
        self._uuid_by_name: Dict[str, str] = {}
        self._groups: Dict[str, Set[str]] = {}
        self._connections: Dict[str, ZyreConnection] = {}

    @property
    def peer_id(self) -> Optional[str]:
        return self._peer_id

    @property
    def room(self) -> "ZyreRoomChannel":
        return self._room

    def start(self) -> None:
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self.node = Zyre(None)
        self.node.set_name(self.name)
        self.node.start()
        self._running = True
        self._rx_thread = threading.Thread(target=self._rx_loop, daemon=True)
        self._rx_thread.start()
        self._loop.call_soon(self._opened)

    def _opened(self) -> None:
        self._peer_id = self.name
        self.emit("open", self.name)

    def stop(self) -> None:
        for conn in list(self._connections.values()):
            conn.close()
        self._running = False
        self._peer_id = None
        if self.node is not None:
            try:
                self.node.stop()
            except Exception as ex:
                logger.warning("zyre node stop failed: %s", ex)

    # ---- data connections ----
    def connect(self, peer_id: str, **options) -> "ZyreConnection":
        conn = ZyreConnection(self, peer_id)
        self._connections[peer_id] = conn
        self._loop.call_soon(self._link, conn)
        return conn

    def _link(self, conn: "ZyreConnection") -> None:
        if conn.peer_id not in self._uuid_by_name:
            self._connections.pop(conn.peer_id, None)
            conn.emit("error", TransportError(f"peer {conn.peer_id} is not on the network"))
            return
        conn._set_open()

    def call(self, peer_id: str, stream: Any, **options) -> MediaCall:
        raise TransportError("media calls are not supported over zyre")

    def _whisper(self, peer_id: str, data: Frame) -> None:
        binary = isinstance(data, (bytes, bytearray))
        payload = bytes(data) if binary else data.encode("utf-8")
        header = json.dumps({"kind": "data", "binary": binary}, separators=(",", ":")).encode("utf-8")
        uuid = self._uuid_by_name.get(peer_id, peer_id)
        self.node.whisper(uuid, [header, payload])

    def _forget(self, conn: "ZyreConnection") -> None:
        if self._connections.get(conn.peer_id) is conn:
            del self._connections[conn.peer_id]

    # ---- receive thread ----
    def _rx_loop(self):
        while self._running:
            try:
                event = ZyreEvent(self.node)
            except Exception:
                continue
            if not event:
                continue
            etype = _text(event.type())
            try:
                peer_uuid = _text(event.peer_uuid())
            except Exception:
                continue

            if etype == "ENTER":
                self._post(self._on_enter, peer_uuid, _text(event.peer_name()))
            elif etype == "JOIN":
                self._post(self._on_join, peer_uuid, _text(event.group()))
            elif etype == "LEAVE":
                self._post(self._on_leave, peer_uuid, _text(event.group()))
            elif etype == "EXIT":
                self._post(self._on_exit, peer_uuid)
            elif etype == "WHISPER":
                headers, payload = self._parse_frames(event.msg())
                self._post(self._on_whisper, peer_uuid, headers, payload)

    def _post(self, fn, *args) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(fn, *args)

    def _on_enter(self, peer_uuid: str, name: str) -> None:
        self._peers_by_uuid[peer_uuid] = name
        self._uuid_by_name[name] = peer_uuid

    def _on_join(self, peer_uuid: str, group: str) -> None:
        name = self._peers_by_uuid.get(peer_uuid, peer_uuid)
        self._groups.setdefault(group, set()).add(name)
        self._room.emit(RoomMessage.ROOM_USER_JOIN, {"roomName": group, "src": name})

    def _on_leave(self, peer_uuid: str, group: str) -> None:
        name = self._peers_by_uuid.get(peer_uuid, peer_uuid)
        members = self._groups.get(group, set())
        if name in members:
            members.discard(name)
            self._room.emit(RoomMessage.ROOM_USER_LEAVE, {"roomName": group, "src": name})

    def _on_exit(self, peer_uuid: str) -> None:
        name = self._peers_by_uuid.pop(peer_uuid, peer_uuid)
        self._uuid_by_name.pop(name, None)
        for group in list(self._groups):
            self._on_leave(peer_uuid, group)
        conn = self._connections.get(name)
        if conn is not None:
            conn.close()

    def _on_whisper(self, peer_uuid: str, headers: Dict[str, Any], payload: bytes) -> None:
        name = self._peers_by_uuid.get(peer_uuid, peer_uuid)
        conn = self._connections.get(name)
        if conn is None:
            # peer opened the channel from its side
            conn = ZyreConnection(self, name)
            self._connections[name] = conn
            self.emit("connection", conn)
            conn._set_open()
        data: Frame = payload if headers.get("binary") else payload.decode("utf-8", errors="replace")
        conn.emit("data", data)

    def _parse_frames(self, zmsg) -> Tuple[Dict[str, Any], bytes]:
        frames = []
        try:
            while True:
                try:
                    data = zmsg.popmem()
                except AttributeError:
                    data = zmsg.pop()
                if not data:
                    break
                if not isinstance(data, (bytes, bytearray)):
                    data = bytes(data)
                frames.append(bytes(data))
        except Exception as ex:
            logger.debug("stopped reading zyre frames: %s", ex)
        headers: Dict[str, Any] = {}
        payload = b""
        if len(frames) >= 2:
            try:
                headers = json.loads(frames[0].decode("utf-8"))
            except ValueError:
                headers = {}
            payload = frames[1]
        elif frames:
            payload = frames[0]
        return headers, payload


class ZyreRoomChannel(RoomChannel):
    """Room signaling answered locally from Zyre group state."""

    def __init__(self, transport: ZyreTransport):
        super().__init__()
        self._t = transport

    def send(self, message_type: str, payload: dict) -> None:
        t = self._t
        if t.node is None or t.peer_id is None:
            raise TransportError("transport is not open")
        group = payload.get("roomName")
        if not group:
            raise TransportError("room messages need a roomName")

        if message_type == RoomMessage.ROOM_JOIN:
            t.node.join(group)
            t._groups.setdefault(group, set()).add(t.peer_id)
            # Zyre does not echo our own JOIN; acknowledge it here
            t._loop.call_soon(self.emit, RoomMessage.ROOM_USER_JOIN, {"roomName": group, "src": t.peer_id})
        elif message_type == RoomMessage.ROOM_LEAVE:
            t.node.leave(group)
            t._groups.get(group, set()).discard(t.peer_id)
        elif message_type == RoomMessage.ROOM_GET_USERS:
            members = sorted(t._groups.get(group, set()))
            t._loop.call_soon(self.emit, RoomMessage.ROOM_USERS, {"roomName": group, "userList": members})
        else:
            raise TransportError(f"unsupported room message {message_type}")


class ZyreConnection(Connection):

    def __init__(self, transport: ZyreTransport, peer_id: str):
        super().__init__()
        self._t = transport
        self._peer_id = peer_id
        self._open = False
        self._closed = False

    @property
    def peer_id(self) -> str:
        return self._peer_id

    @property
    def open(self) -> bool:
        return self._open and not self._closed

    def _set_open(self) -> None:
        if not self._closed and not self._open:
            self._open = True
            self.emit("open")

    def send(self, data: Frame) -> None:
        if not self.open:
            raise TransportError(f"connection to {self._peer_id} is not open")
        self._t._whisper(self._peer_id, data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._t._forget(self)
        self.emit("close")


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return value if isinstance(value, str) else str(value)
