from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .codecs import Codec, JSONCodec
from .config import KEEPALIVE, ClientOptions, validate_room_name
from .deferred import Deferred
from .devices import DeviceRegistry
from .errors import (BootstrapError, BootstrapTimeoutError, ConnectionClosedError,
                     FrameDecodeError, StateError, TransportError, ValidationError)
from .events import EventEmitter
from .keepalive import Keepalive
from .message import ClientState, ControlFrame, Device, RoomMessage, RpcReply, Unrecognized
from .rpc import Response, RpcCorrelator
from .streaming import StreamingControl
from .topics import SubscriptionSet
from .transport import Connection, Frame, MediaCall, Transport
from .wire import decode_frame, pack_envelope

logger = logging.getLogger(__name__)


class MeshRoomClient(EventEmitter):

    # Notes:
    # - Bootstrap is one pass: transport open -> room joined -> member list -> STARTED.
    #   Each step has its own timeout; any failure aborts start() with BootstrapError.
    # - Devices are members whose peer id carries the device prefix. Each one gets a
    #   data connection, a keepalive and a profile handshake before it is addressable.
    # - publish fans out to every registered device, no acks. subscribe/unsubscribe are local.
    # - fetch is RPC over the same connections, correlated by transaction_id.
    #
    # Events: state:change, connect, error, device:connected, meta, device:closed,
    #         device:error, message, stream, stream:error, stream:closed

    def __init__(self, room_name: str, transport: Transport, *,
                 options: Optional[ClientOptions] = None, codec: Optional[Codec] = None):
        super().__init__()
        self.room_name = validate_room_name(room_name)
        self.transport = transport
        self.options = (options or ClientOptions()).validate()
        self.codec = codec or JSONCodec()
        self.state = ClientState.INIT

        self.registry = DeviceRegistry()
        self.rpc = RpcCorrelator(self.registry, timeout=self.options.timeout, codec=self.codec)
        self.streaming = StreamingControl(transport, self.registry, self, self.options,
                                          lambda: self.peer_id)

        self._subs = SubscriptionSet()
        self._keepalives: Dict[str, Keepalive] = {}
        self._connections: Dict[str, Connection] = {}
        self._connecting: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._room_handlers: List[Tuple[str, Callable]] = []
        self._closed = False

    # ---- introspection ----
    @property
    def peer_id(self) -> Optional[str]:
        return self.transport.peer_id

    @property
    def started(self) -> bool:
        return self.state is ClientState.STARTED and not self._closed

    @property
    def devices(self) -> List[Device]:
        return self.registry.snapshot()

    @property
    def subscriptions(self) -> Tuple[str, ...]:
        return self._subs.snapshot()

    # ---- bootstrap ----
    async def start(self) -> "MeshRoomClient":
        if self.state is not ClientState.INIT or self._closed:
            raise StateError(f"client cannot start from state {self.state}")
        try:
            await self._await_transport()
            self._set_state(ClientState.TRANSPORT_CONNECTED)

            await self._join_room()
            self._set_state(ClientState.ROOM_JOINED)

            members = await self._request_members()
            self._set_state(ClientState.PEER_LIST_OBTAINED)

            self._install_room_handlers()
            self._connect_to_devices(members)
            self._set_state(ClientState.STARTED)
        except Exception as ex:
            logger.error("bootstrap of room %s failed in state %s: %s", self.room_name, self.state, ex)
            self._detach_room_handlers()
            self.transport.stop()
            self.emit("error", ex)
            raise BootstrapError(f"cannot start client for room {self.room_name}: {ex}") from ex

        logger.info("client %s started in room %s", self.peer_id, self.room_name)
        self.emit("connect")
        return self

    async def _await_transport(self) -> str:
        if self.transport.peer_id:
            return self.transport.peer_id

        deferred: Deferred[str] = Deferred(
            self.options.timeout,
            on_timeout=lambda: BootstrapTimeoutError("timeout - create transport connection"),
        )

        def _on_open(peer_id: str) -> None:
            deferred.resolve(peer_id)

        def _on_error(err: Any) -> None:
            deferred.reject(err if isinstance(err, BaseException) else TransportError(str(err)))

        self.transport.on("open", _on_open)
        self.transport.on("error", _on_error)
        deferred.add_cleanup(lambda: self.transport.off("open", _on_open))
        deferred.add_cleanup(lambda: self.transport.off("error", _on_error))
        self.transport.start()
        return await deferred

    async def _room_exchange(self, request: RoomMessage, payload: dict, expected: RoomMessage,
                             accept: Callable[[dict], bool], failure: str) -> dict:
        room = self.transport.room
        deferred: Deferred[dict] = Deferred(
            self.options.timeout, on_timeout=lambda: BootstrapTimeoutError(failure))

        def _listener(mesg: dict) -> None:
            if isinstance(mesg, dict) and accept(mesg):
                deferred.resolve(mesg)

        room.on(expected, _listener)
        deferred.add_cleanup(lambda: room.off(expected, _listener))
        room.send(request, payload)
        return await deferred

    async def _join_room(self) -> None:
        await self._room_exchange(
            RoomMessage.ROOM_JOIN,
            {"roomName": self.room_name, "roomType": "mesh"},
            RoomMessage.ROOM_USER_JOIN,
            lambda m: m.get("roomName") == self.room_name and m.get("src") == self.peer_id,
            f"cannot join message hub: {self.room_name}",
        )

    async def _request_members(self) -> List[str]:
        mesg = await self._room_exchange(
            RoomMessage.ROOM_GET_USERS,
            {"roomName": self.room_name, "type": "media"},
            RoomMessage.ROOM_USERS,
            lambda m: m.get("roomName") == self.room_name,
            "cannot get user_list",
        )
        return list(mesg.get("userList") or [])

    def _set_state(self, state: ClientState) -> None:
        if state.rank <= self.state.rank:
            raise StateError(f"illegal state transition {self.state} -> {state}")
        self.state = state
        logger.info("state: %s", state)
        self.emit("state:change", state)

    # ---- room membership ----
    def _install_room_handlers(self) -> None:
        room = self.transport.room
        for message_type, handler in ((RoomMessage.ROOM_USER_JOIN, self._on_room_join),
                                      (RoomMessage.ROOM_USER_LEAVE, self._on_room_leave)):
            room.on(message_type, handler)
            self._room_handlers.append((message_type, handler))

    def _detach_room_handlers(self) -> None:
        room = self.transport.room
        for message_type, handler in self._room_handlers:
            room.off(message_type, handler)
        self._room_handlers.clear()

    def _on_room_join(self, mesg: dict) -> None:
        if mesg.get("roomName") != self.room_name:
            return
        src = mesg.get("src")
        if src and src != self.peer_id:
            self._connect_device(src)

    def _on_room_leave(self, mesg: dict) -> None:
        if mesg.get("roomName") != self.room_name:
            return
        uuid = self.registry.uuid_for_peer(mesg.get("src", ""))
        if uuid is None:
            return
        device = self.registry.unregister(uuid)
        self._stop_keepalive(device.peer_id)
        logger.info("device %s left room %s", uuid, self.room_name)
        self.emit("device:closed", uuid)
        device.connection.close()

    def _connect_to_devices(self, members: Iterable[str]) -> None:
        # the member list can carry duplicates
        for peer_id in dict.fromkeys(members):
            if isinstance(peer_id, str) and peer_id.startswith(self.options.device_prefix):
                self._connect_device(peer_id)

    # ---- device connections ----
    def _connect_device(self, peer_id: str) -> Optional[Connection]:
        if self.registry.uuid_for_peer(peer_id) is not None or peer_id in self._connecting:
            logger.info("connection for %s already exists", peer_id)
            return None
        self._connecting.add(peer_id)
        conn = self.transport.connect(peer_id, serialization="none", reliable=True)
        self._connections[peer_id] = conn
        conn.on("open", lambda: self._on_connection_open(conn))
        conn.on("error", lambda err: self._on_connection_error(conn, err))
        conn.on("close", lambda: self._on_connection_close(conn))
        logger.debug("connecting to %s", peer_id)
        return conn

    def _on_connection_open(self, conn: Connection) -> None:
        keepalive = Keepalive(conn.send, KEEPALIVE.format(peer_id=self.peer_id),
                              self.options.keepalive_interval)
        self._keepalives[conn.peer_id] = keepalive
        keepalive.start()

        conn.on("data", lambda frame: self._on_frame(conn, frame))
        task = asyncio.get_running_loop().create_task(self._handshake(conn))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handshake(self, conn: Connection) -> None:
        try:
            device = await self.registry.register(conn)
        except ConnectionClosedError as ex:
            logger.warning("%s", ex)
            return
        except Exception as ex:
            logger.warning("profile handshake with %s failed: %s", conn.peer_id, ex)
            self.emit("device:error", conn.peer_id, ex)
            return
        finally:
            self._connecting.discard(conn.peer_id)

        try:
            self.emit("device:connected", device.uuid, device.profile)
            self.emit("meta", device.profile)
        except Exception:
            logger.exception("device:connected handler failed for %s", device.uuid)

    def _on_connection_error(self, conn: Connection, err: Any) -> None:
        logger.warning("connection error with %s: %s", conn.peer_id, err)
        self._connecting.discard(conn.peer_id)
        self.emit("device:error", conn.peer_id, err)

    def _on_connection_close(self, conn: Connection) -> None:
        self._connecting.discard(conn.peer_id)
        if self._connections.get(conn.peer_id) is conn:
            del self._connections[conn.peer_id]
        self._stop_keepalive(conn.peer_id)
        uuid = self.registry.uuid_for_peer(conn.peer_id)
        device = self.registry.get(uuid) if uuid else None
        if device is None or device.connection is not conn:
            return
        self.registry.unregister(uuid)
        logger.info("device %s closed", uuid)
        self.emit("device:closed", uuid)

    def _stop_keepalive(self, peer_id: str) -> None:
        keepalive = self._keepalives.pop(peer_id, None)
        if keepalive is not None:
            keepalive.stop()

    # ---- inbound ----
    def _on_frame(self, conn: Connection, frame: Frame) -> None:
        try:
            decoded = decode_frame(frame, self.codec, self.registry.exists)
        except FrameDecodeError as ex:
            logger.warning("dropping frame from %s: %s", conn.peer_id, ex)
            return

        if isinstance(decoded, ControlFrame):
            logger.debug("control frame from %s: %s", conn.peer_id, decoded.command)
            return

        try:
            # subscribers see every enveloped topic, even one the correlator rejects
            if decoded.topic is not None and self._subs.any_match(decoded.topic):
                self.emit("message", decoded.topic, decoded.payload)
            if isinstance(decoded, RpcReply):
                self.rpc.handle_reply(decoded.payload)
        except Exception:
            logger.exception("error handling frame from %s", conn.peer_id)

        if isinstance(decoded, Unrecognized):
            logger.warning("unrecognized frame from %s: %s", conn.peer_id, decoded.reason)

    # ---- pub/sub ----
    def publish(self, topic: str, payload: Any) -> int:
        """
        Send {topic, payload} to every registered device. No acks.
        Returns the number of devices the frame was handed to.
        """
        if not isinstance(topic, str):
            raise ValidationError("topic should be string")
        if not isinstance(payload, (str, Mapping, list, tuple)):
            raise ValidationError("data should be string or object")
        if isinstance(payload, Mapping):
            payload = dict(payload)
        elif isinstance(payload, tuple):
            payload = list(payload)

        frame = pack_envelope(topic, payload, self.codec)
        sent = 0
        for device in self.registry:
            try:
                device.connection.send(frame)
                sent += 1
            except Exception as ex:
                logger.warning("publish to %s failed: %s", device.uuid, ex)
        logger.debug("published %s to %d device(s)", topic, sent)
        return sent

    def subscribe(self, topic: str) -> None:
        if not isinstance(topic, str):
            raise ValidationError("topic should be string")
        self._subs.add(topic)

    def unsubscribe(self, topic: str) -> None:
        if not isinstance(topic, str):
            raise ValidationError("topic should be string")
        self._subs.discard(topic)

    # ---- rpc ----
    async def fetch(self, uuid_path: str, *, method: str = "GET",
                    query: Optional[Dict[str, Any]] = None, body: Any = None,
                    timeout: Optional[float] = None) -> Response:
        """
        fetch("device-uuid/echo/hello", method="PUT", body={...})
        Raises NoConnectionError at once if the uuid has no connection.
        """
        return await self.rpc.fetch(uuid_path, method=method, query=query, body=body, timeout=timeout)

    # ---- streaming ----
    async def request_streaming(self, uuid: str) -> Any:
        return await self.streaming.request_streaming(uuid)

    async def stop_streaming(self, uuid: str) -> None:
        await self.streaming.stop_streaming(uuid)

    async def send_stream(self, uuid: str, stream: Any,
                          options: Optional[Mapping[str, Any]] = None) -> MediaCall:
        return await self.streaming.send_stream(uuid, stream, options)

    # ---- shutdown ----
    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._detach_room_handlers()
        for peer_id in list(self._keepalives):
            self._stop_keepalive(peer_id)
        self.rpc.close()
        self.streaming.close()

        for device in self.registry.snapshot():
            self.registry.unregister(device.uuid)
            self.emit("device:closed", device.uuid)
        connections, self._connections = list(self._connections.values()), {}
        for conn in connections:
            conn.close()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self.transport.stop()
        logger.info("client %s closed", self.peer_id)

    async def __aenter__(self) -> "MeshRoomClient":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
