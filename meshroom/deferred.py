from __future__ import annotations
import asyncio
from typing import Any, Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")


class Deferred(Generic[T]):
    """
    One-shot result raced by a timer. Whichever of resolve/reject/timeout
    comes first settles the future; the timer is cancelled and cleanups run
    exactly once. Later settlement attempts return False and do nothing.
    """

    def __init__(self, timeout: Optional[float] = None,
                 on_timeout: Optional[Callable[[], BaseException]] = None,
                 *, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self.future: asyncio.Future[T] = self._loop.create_future()
        self._cleanups: List[Callable[[], Any]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._on_timeout = on_timeout
        if timeout is not None:
            self._timer = self._loop.call_later(timeout, self._expire)
        # awaiting task cancelled: still disarm and clean up
        self.future.add_done_callback(lambda f: self._finish() if f.cancelled() else None)

    @property
    def settled(self) -> bool:
        return self.future.done()

    def add_cleanup(self, fn: Callable[[], Any]) -> None:
        """Run fn once when the deferred settles (any path)."""
        if self.settled:
            fn()
        else:
            self._cleanups.append(fn)

    def resolve(self, value: T) -> bool:
        if self.settled:
            return False
        self.future.set_result(value)
        self._finish()
        return True

    def reject(self, exc: BaseException) -> bool:
        if self.settled:
            return False
        self.future.set_exception(exc)
        self._finish()
        return True

    def _expire(self) -> None:
        self._timer = None
        if self.settled:
            return
        exc = self._on_timeout() if self._on_timeout else asyncio.TimeoutError()
        self.reject(exc)

    def _finish(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        cleanups, self._cleanups = self._cleanups, []
        for fn in cleanups:
            fn()

    def __await__(self):
        return self.future.__await__()
