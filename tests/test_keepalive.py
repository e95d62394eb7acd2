from __future__ import annotations

import asyncio

import pytest

from meshroom.keepalive import Keepalive


@pytest.mark.asyncio
async def test_keepalive_sends_periodically_until_stopped() -> None:
    sent = []
    keepalive = Keepalive(sent.append, "SSG:keepalive,app-1", every_seconds=0.01)
    keepalive.start()
    assert keepalive.running

    await asyncio.sleep(0.06)
    keepalive.stop()
    assert not keepalive.running
    count = len(sent)

    await asyncio.sleep(0.03)
    assert count >= 2
    assert len(sent) == count
    assert set(sent) == {"SSG:keepalive,app-1"}


@pytest.mark.asyncio
async def test_keepalive_survives_send_failures() -> None:
    attempts = []

    def flaky(message: str) -> None:
        attempts.append(message)
        raise RuntimeError("channel busy")

    keepalive = Keepalive(flaky, "SSG:keepalive,app-1", every_seconds=0.01)
    keepalive.start()
    await asyncio.sleep(0.05)
    assert keepalive.running
    keepalive.stop()
    assert len(attempts) >= 2
