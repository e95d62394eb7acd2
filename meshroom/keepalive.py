from __future__ import annotations
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Keepalive:
    """
    Periodically send a fixed control string on one connection.
    Fire-and-forget: no ack, no retry, no backoff.
    """

    def __init__(self, send: Callable[[str], None], message: str, every_seconds: float = 5.0):
        """
        send: callable(str) -> None (typically Connection.send)
        """
        self._send = send
        self._message = message
        self._every = max(0.01, float(every_seconds))
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._loop())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def beat_now(self) -> None:
        self._send(self._message)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._every)
            try:
                self.beat_now()
            except Exception:
                logger.warning("keepalive send failed", exc_info=True)
