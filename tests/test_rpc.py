from __future__ import annotations

import asyncio
import itertools
import json

import pytest

from meshroom.devices import DeviceRegistry
from meshroom.errors import (ClientClosedError, NoConnectionError, RequestTimeoutError, TransportError,
                             ValidationError)
from meshroom.rpc import ChunkAssembly, Response, RpcCorrelator

from support import FakeConnection


def _correlator(conn: FakeConnection, timeout: float = 0.5) -> RpcCorrelator:
    registry = DeviceRegistry()
    registry._store(conn, {"uuid": "dev1"})
    return RpcCorrelator(registry, timeout=timeout)


async def _start_fetch(rpc: RpcCorrelator, conn: FakeConnection, path: str = "dev1/echo", **kwargs):
    task = asyncio.create_task(rpc.fetch(path, **kwargs))
    await asyncio.sleep(0)
    request = json.loads(conn.sent[-1])
    return task, request["payload"]["transaction_id"]


def test_split_path() -> None:
    assert RpcCorrelator.split_path("dev1/led/on") == ("dev1", "/led/on")
    assert RpcCorrelator.split_path("dev1/") == ("dev1", "/")
    for bad in ("dev1", "/led", "", None):
        with pytest.raises(ValidationError, match="uuid_path is invalid format"):
            RpcCorrelator.split_path(bad)


def test_transaction_ids_strictly_increase() -> None:
    rpc = RpcCorrelator(DeviceRegistry(), timeout=1.0)
    ids = [rpc.next_transaction_id() for _ in range(50)]
    assert ids == sorted(set(ids))


@pytest.mark.asyncio
async def test_fetch_sends_request_and_resolves_on_reply() -> None:
    conn = FakeConnection()
    rpc = _correlator(conn)
    task, tid = await _start_fetch(rpc, conn, method="POST", query={"q": "1"}, body={"x": 1})

    sent = json.loads(conn.sent[-1])
    assert sent["topic"] == "dev1"
    assert sent["payload"] == {"method": "POST", "path": "/echo", "query": {"q": "1"},
                               "body": {"x": 1}, "transaction_id": tid}

    assert rpc.handle_reply({"transaction_id": tid, "status": 200, "method": "POST", "body": {"x": 1}})
    response = await task
    assert isinstance(response, Response)
    assert response.ok
    assert response.status == 200
    assert await response.json() == {"x": 1}
    assert await response.text() == '{"x":1}'
    assert rpc.pending == {}


@pytest.mark.asyncio
async def test_fetch_unknown_uuid_fails_immediately() -> None:
    rpc = RpcCorrelator(DeviceRegistry(), timeout=1.0)
    with pytest.raises(NoConnectionError, match="no connection found for ghost"):
        await rpc.fetch("ghost/echo")


@pytest.mark.asyncio
async def test_fetch_times_out() -> None:
    conn = FakeConnection()
    rpc = _correlator(conn, timeout=0.02)
    task, tid = await _start_fetch(rpc, conn)

    with pytest.raises(RequestTimeoutError, match=f"fetch timeout for {tid}"):
        await task
    assert rpc.pending == {}
    assert not rpc.handle_reply({"transaction_id": tid, "status": 200, "body": "late"})


@pytest.mark.asyncio
async def test_send_failure_rejects_with_transport_error() -> None:
    conn = FakeConnection(fail_with=RuntimeError("channel closed"))
    rpc = _correlator(conn)
    with pytest.raises(TransportError) as exc:
        await rpc.fetch("dev1/echo")
    assert isinstance(exc.value.__cause__, RuntimeError)
    assert rpc.pending == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
async def test_chunked_reply_reassembles_in_any_order(order) -> None:
    conn = FakeConnection()
    rpc = _correlator(conn)
    task, tid = await _start_fetch(rpc, conn)

    pieces = ['{"data":', '"abcdef"', "}"]
    results = [rpc.handle_reply({"transaction_id": tid, "status": 200, "method": "GET", "chunked": True,
                                 "chunk_len": 3, "idx": idx, "chunk": pieces[idx]})
               for idx in order]

    assert results == [False, False, True]
    response = await task
    assert await response.text() == '{"data":"abcdef"}'
    assert await response.json() == {"data": "abcdef"}
    assert rpc.assemblies == {}


@pytest.mark.asyncio
async def test_out_of_range_chunk_is_dropped() -> None:
    conn = FakeConnection()
    rpc = _correlator(conn)
    task, tid = await _start_fetch(rpc, conn)

    def chunk(idx, text):
        return {"transaction_id": tid, "status": 200, "chunked": True, "chunk_len": 2, "idx": idx, "chunk": text}

    assert not rpc.handle_reply(chunk(5, "junk"))
    assert not rpc.handle_reply(chunk(0, "ab"))
    assert rpc.handle_reply(chunk(1, "cd"))
    assert await (await task).text() == "abcd"


@pytest.mark.asyncio
async def test_timeout_discards_partial_assembly() -> None:
    conn = FakeConnection()
    rpc = _correlator(conn, timeout=0.02)
    task, tid = await _start_fetch(rpc, conn)
    rpc.handle_reply({"transaction_id": tid, "status": 200, "chunked": True, "chunk_len": 2,
                      "idx": 0, "chunk": "ab"})
    assert tid in rpc.assemblies

    with pytest.raises(RequestTimeoutError):
        await task
    assert rpc.assemblies == {}


@pytest.mark.asyncio
async def test_close_rejects_pending_requests() -> None:
    conn = FakeConnection()
    rpc = _correlator(conn)
    task, _ = await _start_fetch(rpc, conn)

    rpc.close()
    with pytest.raises(ClientClosedError):
        await task


def test_chunk_assembly() -> None:
    assembly = ChunkAssembly(transaction_id=1, status=200, method="GET", total_chunks=2)
    assert not assembly.put(-1, "x")
    assert assembly.put(1, "b")
    assert not assembly.complete
    assert assembly.put(0, "a")
    assert assembly.complete
    assert assembly.join() == "ab"


@pytest.mark.asyncio
async def test_response_status_helpers() -> None:
    assert not Response(404, 1, "GET", None).ok
    assert await Response(204, 1, "GET", None).text() == ""
    assert await Response(200, 1, "GET", '{"a":1}').json() == {"a": 1}
