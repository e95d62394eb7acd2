"""
In-process device peer for tests and demos.

SimulatedDevice joins a MemoryHub room under a device-prefixed peer id and
behaves like a gateway-side device: it answers the profile handshake, serves
RPC requests from registered routes, splits oversized replies into indexed
chunks, and calls back with a media stream on request.
"""

from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .codecs import Codec, JSONCodec
from .config import CONTROL_PREFIX, DEVICE_PREFIX
from .message import RoomMessage
from .transport import Connection, Frame, MediaCall
from .transports.memory import MemoryHub, MemoryTransport
from .wire import is_control, pack_envelope, parse_control

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Any]


class SimulatedDevice:

    def __init__(self, hub: MemoryHub, room_name: str, uuid: str, *,
                 peer_id: Optional[str] = None,
                 profile: Optional[Dict[str, Any]] = None,
                 stream: Any = "device-stream",
                 codec: Optional[Codec] = None,
                 max_message_size: Optional[int] = None,
                 chunk_order: Optional[Callable[[List[int]], Iterable[int]]] = None,
                 answer_profile: bool = True):
        self.hub = hub
        self.room_name = room_name
        self.uuid = uuid
        self.peer_id = peer_id or DEVICE_PREFIX + uuid
        self.profile = {"uuid": uuid, **(profile or {})}
        self.stream = stream
        self.codec = codec or JSONCodec()
        self.max_message_size = max_message_size
        self.chunk_order = chunk_order
        self.answer_profile = answer_profile
        self.transport = MemoryTransport(hub, self.peer_id)

        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.connections: List[Connection] = []
        self.received: List[Frame] = []
        self.messages: List[Tuple[str, Any]] = []
        self.keepalives: List[str] = []
        self.outgoing_calls: List[MediaCall] = []
        self.incoming_calls: List[MediaCall] = []
        self.received_streams: List[Any] = []
        self.stop_requests = 0

    # ---- lifecycle ----
    async def start(self) -> "SimulatedDevice":
        opened = asyncio.get_running_loop().create_future()
        self.transport.once("open", lambda pid: opened.done() or opened.set_result(pid))
        self.transport.on("connection", self._on_connection)
        self.transport.on("call", self._on_call)
        self.transport.start()
        await opened
        self.transport.room.send(RoomMessage.ROOM_JOIN, {"roomName": self.room_name, "roomType": "mesh"})
        return self

    def leave(self) -> None:
        self.transport.room.send(RoomMessage.ROOM_LEAVE, {"roomName": self.room_name})

    def stop(self) -> None:
        self.transport.stop()

    # ---- routes ----
    def route(self, method: str, path: str, handler: Optional[Handler] = None):
        """
        device.route("GET", "/echo", fn)  or  @device.route("GET", "/echo")
        A handler gets the request payload and returns a body, or (status, body).
        """
        def _register(fn: Handler) -> Handler:
            self.routes[(method.upper(), path)] = fn
            return fn
        if handler is not None:
            return _register(handler)
        return _register

    # ---- outbound ----
    def publish(self, topic: str, payload: Any) -> None:
        frame = pack_envelope(topic, payload, self.codec)
        for conn in self.connections:
            if conn.open:
                conn.send(frame)

    def send_raw(self, frame: Frame) -> None:
        for conn in self.connections:
            if conn.open:
                conn.send(frame)

    def reply(self, conn: Connection, transaction_id: Any, status: int, method: Optional[str],
              body: Any) -> None:
        reply = {"status": status, "method": method, "transaction_id": transaction_id, "body": body}
        frame = pack_envelope(self.uuid, reply, self.codec)
        if self.max_message_size is None or len(frame) <= self.max_message_size:
            conn.send(frame)
            return
        text = body if isinstance(body, str) else json.dumps(body, separators=(",", ":"))
        size = max(1, self.max_message_size // 2)
        pieces = [text[i:i + size] for i in range(0, len(text), size)] or [""]
        order = list(range(len(pieces)))
        if self.chunk_order is not None:
            order = list(self.chunk_order(order))
        for idx in order:
            conn.send(pack_envelope(self.uuid, {
                "status": status,
                "method": method,
                "transaction_id": transaction_id,
                "chunked": True,
                "chunk_len": len(pieces),
                "idx": idx,
                "chunk": pieces[idx],
            }, self.codec))

    # ---- inbound ----
    def _on_connection(self, conn: Connection) -> None:
        self.connections.append(conn)
        conn.on("data", lambda frame: self._on_data(conn, frame))
        conn.on("close", lambda: self._forget(conn))

    def _forget(self, conn: Connection) -> None:
        if conn in self.connections:
            self.connections.remove(conn)

    def _on_data(self, conn: Connection, frame: Frame) -> None:
        self.received.append(frame)
        if is_control(frame):
            self._on_control(conn, parse_control(frame).command)
            return
        obj = self.codec.loads(frame)
        topic, payload = obj.get("topic"), obj.get("payload")
        if topic == self.uuid and isinstance(payload, dict) and "transaction_id" in payload:
            self._serve(conn, payload)
        else:
            self.messages.append((topic, payload))

    def _on_control(self, conn: Connection, command: str) -> None:
        if command == "profile/get":
            if self.answer_profile:
                conn.send(CONTROL_PREFIX + json.dumps(
                    {"type": "response", "target": "profile", "method": "get", "body": self.profile}))
        elif command.startswith("keepalive,"):
            self.keepalives.append(command.split(",", 1)[1])
        elif command.startswith("stream/start,"):
            caller = command.split(",", 1)[1]
            self.outgoing_calls.append(self.transport.call(caller, self.stream))
        elif command == "stream/stop":
            self.stop_requests += 1
            for call in self.outgoing_calls:
                call.close()
            self.outgoing_calls.clear()
        else:
            logger.debug("device %s ignoring control %s", self.uuid, command)

    def _serve(self, conn: Connection, request: Dict[str, Any]) -> None:
        method = str(request.get("method", "GET")).upper()
        path = request.get("path", "")
        handler = self.routes.get((method, path))
        if handler is None:
            status, body = 404, {"ok": False, "error": "unimplemented", "path": path}
        else:
            result = handler(request)
            status, body = result if isinstance(result, tuple) else (200, result)
        self.reply(conn, request.get("transaction_id"), status, method, body)

    def _on_call(self, call: MediaCall) -> None:
        self.incoming_calls.append(call)
        call.on("stream", self.received_streams.append)
        call.answer()
