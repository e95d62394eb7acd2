"""
Media-session control handshakes.

request_streaming asks a device to call us back with its stream; stop_streaming
tears that call down; send_stream is the opposite direction, we call the device
with a local stream.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Mapping, Optional, Set

from .config import STREAM_START, STREAM_STOP, ClientOptions
from .deferred import Deferred
from .devices import DeviceRegistry
from .errors import (ClientClosedError, NoConnectionError, StreamingError, StreamingTimeoutError,
                     TransportError, ValidationError)
from .events import EventEmitter
from .transport import MediaCall, Transport

logger = logging.getLogger(__name__)


class StreamingControl:

    def __init__(self, transport: Transport, registry: DeviceRegistry, events: EventEmitter,
                 options: ClientOptions, local_peer_id: Callable[[], Optional[str]]):
        self.transport = transport
        self.registry = registry
        self.events = events            # receives "stream", "stream:error", "stream:closed"
        self.options = options
        self._local_peer_id = local_peer_id
        self._waiting: Set[Deferred] = set()

    async def request_streaming(self, uuid: str) -> Any:
        conn = self.registry.connection(uuid)
        if conn is None:
            raise NoConnectionError(uuid, f"cannot get connection for {uuid}")

        answered: list[MediaCall] = []
        deferred: Deferred[Any] = Deferred(
            self.options.timeout,
            on_timeout=lambda: StreamingTimeoutError(f"timeout waiting for stream from {uuid}"),
        )

        def _on_call(call: MediaCall) -> None:
            if self.registry.uuid_for_peer(call.remote_id) != uuid:
                return  # someone else's call
            self.transport.off("call", _on_call)
            answered.append(call)

            def _on_stream(stream: Any) -> None:
                if deferred.settled:
                    return
                self.registry.set_call(uuid, call)
                self.events.emit("stream", stream, uuid)
                deferred.resolve(stream)

            def _on_error(err: Any) -> None:
                self.events.emit("stream:error", err, uuid)
                self.registry.unset_call(uuid)
                deferred.reject(err if isinstance(err, BaseException) else StreamingError(str(err)))

            def _on_close() -> None:
                self.events.emit("stream:closed", uuid)
                self.registry.unset_call(uuid)
                deferred.reject(StreamingError(f"stream closed for {uuid}"))

            call.on("stream", _on_stream)
            call.on("error", _on_error)
            call.on("close", _on_close)
            call.answer()

        def _cleanup() -> None:
            self.transport.off("call", _on_call)
            fut = deferred.future
            if not fut.cancelled() and fut.exception() is None:
                return
            # failed, timed out or abandoned: nothing stays recorded for this device
            self.registry.unset_call(uuid)
            if fut.cancelled() or isinstance(fut.exception(),
                                             (StreamingTimeoutError, ClientClosedError)):
                for call in answered:
                    call.close()

        self._track(deferred)

        deferred.add_cleanup(_cleanup)
        self.transport.on("call", _on_call)
        try:
            conn.send(STREAM_START.format(peer_id=self._local_peer_id()))
        except Exception as ex:
            deferred.reject(_send_failed(uuid, ex))
        logger.debug("requested stream from %s", uuid)
        return await deferred

    async def stop_streaming(self, uuid: str) -> None:
        conn = self.registry.connection(uuid)
        if conn is None:
            raise NoConnectionError(uuid, f"stopStreaming - cannot find connection for {uuid}")
        call = self.registry.call(uuid)
        if call is None:
            raise StreamingError(f"stopStreaming - cannot find call object for {uuid}")

        deferred: Deferred[None] = Deferred(
            self.options.timeout,
            on_timeout=lambda: StreamingTimeoutError("timeout for stopStreaming"),
        )

        def _on_close() -> None:
            deferred.resolve(None)

        call.on("close", _on_close)
        self._track(deferred)
        deferred.add_cleanup(lambda: call.off("close", _on_close))
        deferred.add_cleanup(lambda: self.registry.unset_call(uuid))

        try:
            conn.send(STREAM_STOP)
        except Exception as ex:
            logger.warning("stopStreaming - cannot notify %s: %s", uuid, ex)
        call.close()
        await deferred
        logger.debug("stream from %s stopped", uuid)

    async def send_stream(self, uuid: str, stream: Any,
                          options: Optional[Mapping[str, Any]] = None) -> MediaCall:
        if not isinstance(uuid, str):
            raise ValidationError("parameter `uuid` MUST be string.")
        if stream is None:
            raise ValidationError("parameter `stream` MUST be a media stream object.")
        if options is not None and not isinstance(options, Mapping):
            raise ValidationError("parameter `options` MUST be a mapping")
        peer_id = self.registry.peer_id(uuid)
        if not peer_id:
            raise NoConnectionError(uuid, f"uuid {uuid} does not exist.")

        call_options = {"audio_codec": self.options.audio_codec,
                        "video_codec": self.options.video_codec,
                        **(options or {})}
        call = self.transport.call(peer_id, stream, **call_options)

        deferred: Deferred[MediaCall] = Deferred(
            self.options.send_stream_timeout,
            on_timeout=lambda: StreamingTimeoutError("cannot make media stream connection."),
        )

        # the device sends nothing back; its first stream event just acknowledges the call
        def _on_stream(_remote: Any) -> None:
            deferred.resolve(call)

        def _on_error(err: Any) -> None:
            deferred.reject(StreamingError(f"media call to {uuid} failed: {err}"))

        call.on("stream", _on_stream)
        call.on("error", _on_error)

        def _cleanup() -> None:
            call.off("stream", _on_stream)
            call.off("error", _on_error)
            if deferred.future.cancelled() or deferred.future.exception() is not None:
                call.close()

        self._track(deferred)
        deferred.add_cleanup(_cleanup)
        return await deferred

    def _track(self, deferred: Deferred) -> None:
        self._waiting.add(deferred)
        deferred.add_cleanup(lambda: self._waiting.discard(deferred))

    def close(self) -> None:
        """Reject every streaming call still in flight; used on client shutdown."""
        for deferred in list(self._waiting):
            deferred.reject(ClientClosedError("client closed while a streaming call was in flight"))


def _send_failed(uuid: str, ex: Exception) -> TransportError:
    if isinstance(ex, TransportError):
        return ex
    err = TransportError(f"cannot send to {uuid}: {ex}")
    err.__cause__ = ex
    return err
