"""
Request/response over device data connections.

A fetch sends {topic: uuid, payload: {method, path, query, body, transaction_id}}
and waits for the reply carrying the same transaction_id, or for the timeout,
whichever comes first. Replies larger than the channel's message limit arrive
as indexed fragments and are reassembled here regardless of arrival order.
"""

from __future__ import annotations
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .codecs import Codec, JSONCodec
from .deferred import Deferred
from .devices import DeviceRegistry
from .errors import (ClientClosedError, NoConnectionError, RequestTimeoutError, TransportError,
                     ValidationError)
from .wire import pack_request

logger = logging.getLogger(__name__)


class Response:
    """Reply to a fetch. Body accessors are async to mirror a streamed body."""

    def __init__(self, status: Any, transaction_id: int, method: Optional[str], body: Any):
        self.status = status
        self.transaction_id = transaction_id
        self.method = method
        self._body = body

    @property
    def ok(self) -> bool:
        return isinstance(self.status, int) and 200 <= self.status < 300

    async def text(self) -> str:
        if self._body is None:
            return ""
        if isinstance(self._body, str):
            return self._body
        return json.dumps(self._body, separators=(",", ":"), ensure_ascii=False)

    async def json(self) -> Any:
        if isinstance(self._body, str):
            return json.loads(self._body)
        return self._body

    def __repr__(self) -> str:
        return f"<Response status={self.status} transaction_id={self.transaction_id} method={self.method}>"


@dataclass
class PendingRequest:
    transaction_id: int
    uuid: str
    deferred: Deferred
    created_at: float = field(default_factory=time.monotonic)


@dataclass
class ChunkAssembly:
    transaction_id: int
    status: Any
    method: Optional[str]
    total_chunks: int
    slots: Dict[int, str] = field(default_factory=dict)

    def put(self, idx: int, chunk: str) -> bool:
        """Store one fragment; returns False for an index outside 0..total_chunks-1."""
        if not (0 <= idx < self.total_chunks):
            return False
        self.slots[idx] = chunk
        return True

    @property
    def complete(self) -> bool:
        return len(self.slots) == self.total_chunks

    def join(self) -> str:
        return "".join(self.slots[i] for i in range(self.total_chunks))


class RpcCorrelator:

    def __init__(self, registry: DeviceRegistry, *, timeout: float, codec: Codec = JSONCodec()):
        self.registry = registry
        self.timeout = timeout
        self.codec = codec
        self.pending: Dict[int, PendingRequest] = {}
        self.assemblies: Dict[int, ChunkAssembly] = {}
        self._last_id = 0

    def next_transaction_id(self) -> int:
        # millisecond clock, forced strictly increasing so same-ms calls never collide
        tid = max(int(time.time() * 1000), self._last_id + 1)
        self._last_id = tid
        return tid

    @staticmethod
    def split_path(uuid_path: str) -> tuple[str, str]:
        """'abc/led/on' -> ('abc', '/led/on')"""
        if not isinstance(uuid_path, str) or "/" not in uuid_path:
            raise ValidationError("uuid_path is invalid format")
        uuid, rest = uuid_path.split("/", 1)
        if not uuid:
            raise ValidationError("uuid_path is invalid format")
        return uuid, "/" + rest

    async def fetch(self, uuid_path: str, *, method: str = "GET",
                    query: Optional[Dict[str, Any]] = None, body: Any = None,
                    timeout: Optional[float] = None) -> Response:
        uuid, path = self.split_path(uuid_path)
        conn = self.registry.connection(uuid)
        if conn is None:
            raise NoConnectionError(uuid)

        tid = self.next_transaction_id()
        deferred: Deferred[Response] = Deferred(
            timeout if timeout is not None else self.timeout,
            on_timeout=lambda: self._expired(tid),
        )
        self.pending[tid] = PendingRequest(transaction_id=tid, uuid=uuid, deferred=deferred)
        deferred.add_cleanup(lambda: self.pending.pop(tid, None))

        try:
            conn.send(pack_request(uuid, method=method, path=path, query=query, body=body,
                                   transaction_id=tid, codec=self.codec))
        except Exception as ex:
            err = ex if isinstance(ex, TransportError) else TransportError(f"cannot send request to {uuid}: {ex}")
            if err is not ex:
                err.__cause__ = ex
            deferred.reject(err)
        logger.debug("fetch %s %s%s (transaction_id=%s)", method, uuid, path, tid)
        return await deferred

    def _expired(self, tid: int) -> RequestTimeoutError:
        # a stalled chunk assembly lives exactly as long as its request
        if self.assemblies.pop(tid, None) is not None:
            logger.warning("discarding partial chunked reply for transaction %s", tid)
        logger.warning("fetch timeout for %s", tid)
        return RequestTimeoutError(tid)

    def handle_reply(self, payload: Dict[str, Any]) -> bool:
        """Feed one reply payload; returns True if it settled a pending call."""
        tid = payload.get("transaction_id")
        pending = self.pending.get(tid)
        if pending is None:
            logger.debug("dropping reply for unknown transaction %s", tid)
            return False

        status = payload.get("status")
        method = payload.get("method")

        if not payload.get("chunked"):
            return pending.deferred.resolve(Response(status, tid, method, payload.get("body")))

        assembly = self.assemblies.get(tid)
        if assembly is None:
            try:
                total = int(payload["chunk_len"])
            except (KeyError, TypeError, ValueError):
                logger.warning("chunked reply without a usable chunk_len (transaction %s)", tid)
                return False
            assembly = self.assemblies[tid] = ChunkAssembly(tid, status, method, total)

        idx = payload.get("idx")
        if not isinstance(idx, int) or not assembly.put(idx, payload.get("chunk") or ""):
            logger.warning("chunk index %r out of range 0..%d (transaction %s)",
                           idx, assembly.total_chunks - 1, tid)
            return False
        if not assembly.complete:
            return False

        del self.assemblies[tid]
        return pending.deferred.resolve(
            Response(assembly.status, tid, assembly.method, assembly.join()))

    def close(self) -> None:
        """Reject everything still waiting; used on client shutdown."""
        for pending in list(self.pending.values()):
            pending.deferred.reject(ClientClosedError(
                f"client closed while waiting for transaction {pending.transaction_id}"))
        self.assemblies.clear()
