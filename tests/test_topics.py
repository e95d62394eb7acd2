from __future__ import annotations

import pytest

from meshroom.topics import SubscriptionSet, matches


@pytest.mark.parametrize(
    "topic, topic_filter",
    [
        ("sensor/temp", "sensor/temp"),
        ("sensor/temp", "sensor/+"),
        ("sensor/temp/room1", "sensor/+/room1"),
        ("sensor/temp/room1", "sensor/#"),
        ("sensor/temp/room1", "#"),
        ("a/x/y", "a/#/c"),
        ("sensor", "sensor/temp"),
    ],
)
def test_filter_matches(topic: str, topic_filter: str) -> None:
    assert matches(topic, topic_filter)


@pytest.mark.parametrize(
    "topic, topic_filter",
    [
        ("sensor/temp", "sensor/humidity"),
        ("sensor/temp/room1", "sensor/+"),
        ("sensor/temp", "actuator/#"),
        ("other/temp", "+/humidity"),
    ],
)
def test_filter_rejects(topic: str, topic_filter: str) -> None:
    assert not matches(topic, topic_filter)


def test_subscription_set_is_deduplicated_and_ordered() -> None:
    subs = SubscriptionSet()
    assert subs.add("b/#")
    assert subs.add("a/+")
    assert not subs.add("b/#")

    assert subs.snapshot() == ("b/#", "a/+")
    assert len(subs) == 2
    assert "a/+" in subs


def test_subscription_set_discard_is_idempotent() -> None:
    subs = SubscriptionSet(["a/+"])
    assert subs.discard("a/+")
    assert not subs.discard("a/+")
    assert len(subs) == 0


def test_subscription_set_matching() -> None:
    subs = SubscriptionSet(["sensor/+", "sensor/#", "actuator/#"])
    assert subs.matching("sensor/temp") == ("sensor/+", "sensor/#")
    assert subs.any_match("actuator/led/on")
    assert not subs.any_match("other")
