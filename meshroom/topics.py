from __future__ import annotations
from typing import Iterable, Iterator, Tuple

SINGLE_LEVEL = "+"
MULTI_LEVEL = "#"


def matches(topic: str, topic_filter: str) -> bool:
    """
    Walk the topic's segments against the filter's.
    '+' consumes exactly one segment; once '#' is reached, every remaining
    topic segment matches, wherever '#' sits in the filter.
    """
    fsegs = topic_filter.split("/")
    wildcard = False
    for i, seg in enumerate(topic.split("/")):
        fseg = fsegs[i] if i < len(fsegs) else None
        if wildcard or seg == fseg or fseg == SINGLE_LEVEL:
            continue
        if fseg == MULTI_LEVEL:
            wildcard = True
            continue
        return False
    return True


class SubscriptionSet:
    """Deduplicated filters, kept in subscription order."""

    def __init__(self, filters: Iterable[str] = ()):
        self._filters: dict[str, None] = dict.fromkeys(filters)

    def add(self, topic_filter: str) -> bool:
        if topic_filter in self._filters:
            return False
        self._filters[topic_filter] = None
        return True

    def discard(self, topic_filter: str) -> bool:
        return self._filters.pop(topic_filter, False) is None

    def matching(self, topic: str) -> Tuple[str, ...]:
        return tuple(f for f in self._filters if matches(topic, f))

    def any_match(self, topic: str) -> bool:
        return any(matches(topic, f) for f in self._filters)

    def snapshot(self) -> Tuple[str, ...]:
        return tuple(self._filters)

    def __contains__(self, topic_filter: object) -> bool:
        return topic_filter in self._filters

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._filters))

    def __len__(self) -> int:
        return len(self._filters)
