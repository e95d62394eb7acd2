from __future__ import annotations
import asyncio
import logging
from typing import Dict, Iterator, List, Optional

from .config import PROFILE_REQUEST
from .errors import ConnectionClosedError
from .message import Device
from .transport import Connection, Frame, MediaCall
from .wire import is_control, is_profile_response, parse_control

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Known remote devices, keyed by uuid, with a peer_id -> uuid index.
    Iteration follows registration order.
    """

    def __init__(self):
        self._devices: Dict[str, Device] = {}
        self._uuid_by_peer: Dict[str, str] = {}

    async def register(self, conn: Connection) -> Device:
        """
        Run the profile handshake on an open connection and store the device.
        No timeout: a peer that never answers never becomes addressable.
        Raises ConnectionClosedError if the connection closes first.
        """
        loop = asyncio.get_running_loop()
        done: asyncio.Future[Device] = loop.create_future()

        def _on_data(frame: Frame) -> None:
            if done.done() or not is_control(frame):
                return
            try:
                ctrl = parse_control(frame)
            except ValueError:
                logger.debug("ignoring undecodable control frame from %s", conn.peer_id)
                return
            if not is_profile_response(ctrl.body):
                return
            profile = dict(ctrl.body["body"])
            done.set_result(self._store(conn, profile))

        def _on_close() -> None:
            if not done.done():
                done.set_exception(ConnectionClosedError(
                    f"connection to {conn.peer_id} closed before profile handshake"))

        conn.on("data", _on_data)
        conn.on("close", _on_close)
        try:
            conn.send(PROFILE_REQUEST)
            return await done
        finally:
            conn.off("data", _on_data)
            conn.off("close", _on_close)

    def _store(self, conn: Connection, profile: dict) -> Device:
        uuid = profile["uuid"]
        stale = self._devices.pop(uuid, None)
        if stale is not None:
            logger.warning("device %s re-registered (peer %s -> %s)", uuid, stale.peer_id, conn.peer_id)
            self._uuid_by_peer.pop(stale.peer_id, None)
        device = Device(uuid=uuid, peer_id=conn.peer_id, connection=conn, profile=profile)
        self._devices[uuid] = device
        self._uuid_by_peer[conn.peer_id] = uuid
        logger.info("device registered: uuid=%s peer=%s", uuid, conn.peer_id)
        return device

    def unregister(self, uuid: str) -> Optional[Device]:
        """Drop the record; the connection is left for its owner to close."""
        device = self._devices.pop(uuid, None)
        if device is not None and self._uuid_by_peer.get(device.peer_id) == uuid:
            del self._uuid_by_peer[device.peer_id]
        return device

    # ---- lookups ----
    def get(self, uuid: str) -> Optional[Device]:
        return self._devices.get(uuid)

    def exists(self, uuid: str) -> bool:
        return uuid in self._devices

    def connection(self, uuid: str) -> Optional[Connection]:
        device = self._devices.get(uuid)
        return device.connection if device else None

    def peer_id(self, uuid: str) -> Optional[str]:
        device = self._devices.get(uuid)
        return device.peer_id if device else None

    def uuid_for_peer(self, peer_id: str) -> Optional[str]:
        return self._uuid_by_peer.get(peer_id)

    def call(self, uuid: str) -> Optional[MediaCall]:
        device = self._devices.get(uuid)
        return device.call if device else None

    def set_call(self, uuid: str, call: MediaCall) -> None:
        device = self._devices.get(uuid)
        if device is not None:
            device.call = call

    def unset_call(self, uuid: str) -> None:
        device = self._devices.get(uuid)
        if device is not None:
            device.call = None

    def snapshot(self) -> List[Device]:
        return list(self._devices.values())

    def __iter__(self) -> Iterator[Device]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, uuid: object) -> bool:
        return uuid in self._devices
