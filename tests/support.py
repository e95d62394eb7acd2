from __future__ import annotations

import asyncio
import time
from typing import Callable, List

from meshroom.client import MeshRoomClient
from meshroom.config import ClientOptions
from meshroom.events import EventEmitter
from meshroom.testing import SimulatedDevice
from meshroom.transports.memory import MemoryHub, MemoryTransport

ROOM = "testroom"
FAST = ClientOptions(timeout=0.5, keepalive_interval=0.05, send_stream_timeout=0.5)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


async def start_devices(hub: MemoryHub, *uuids: str, **kwargs) -> List[SimulatedDevice]:
    devices = [SimulatedDevice(hub, ROOM, uuid, **kwargs) for uuid in uuids]
    for device in devices:
        await device.start()
    # let the joins land in the hub
    await asyncio.sleep(0.01)
    return devices


async def started_client(hub: MemoryHub, expected_devices: int = 0, *,
                         options: ClientOptions = FAST, peer_id: str = "app-1",
                         **kwargs) -> MeshRoomClient:
    client = MeshRoomClient(ROOM, MemoryTransport(hub, peer_id), options=options, **kwargs)
    await client.start()
    await wait_until(lambda: len(client.registry) == expected_devices)
    return client


class Recorder:
    """Collects (event, args) pairs from an emitter."""

    def __init__(self, emitter: EventEmitter, *events: str):
        self.seen: List[tuple] = []
        for event in events:
            emitter.on(event, self._handler(event))

    def _handler(self, event: str):
        def _record(*args):
            self.seen.append((event, args))
        return _record

    def of(self, event: str) -> List[tuple]:
        return [args for name, args in self.seen if name == event]


class FakeConnection(EventEmitter):
    """Connection stand-in that records what is sent on it."""

    def __init__(self, peer_id: str = "SSG_dev1", fail_with: Exception | None = None):
        super().__init__()
        self.peer_id = peer_id
        self.open = True
        self.sent: list = []
        self.fail_with = fail_with

    def send(self, data) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(data)

    def close(self) -> None:
        self.open = False
        self.emit("close")
