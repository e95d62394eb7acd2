from __future__ import annotations

from typing import Any, Callable, Dict, Tuple

Handler = Callable[..., Any]


class EventSource:
    """Ordered list of handlers fired with the same arguments."""

    def __init__(self):
        self._handlers: list[Handler] = []

    def __iadd__(self, handler: Handler) -> "EventSource":
        return self.add(handler)

    def __isub__(self, handler: Handler) -> "EventSource":
        return self.remove(handler)

    def __len__(self) -> int:
        return len(self._handlers)

    def add(self, handler: Handler) -> "EventSource":
        self._handlers.append(handler)
        return self

    def remove(self, handler: Handler) -> "EventSource":
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def handlers(self) -> Tuple[Handler, ...]:
        return tuple(self._handlers)

    def fire(self, *args, **kwargs) -> int:
        # snapshot: handlers may detach themselves while firing
        handlers = self.handlers()
        for handler in handlers:
            handler(*args, **kwargs)
        return len(handlers)


class EventEmitter:
    """
    Named events on top of EventSource.
    emitter.on("data", handler); emitter.emit("data", payload)
    """

    def __init__(self):
        self._events: Dict[str, EventSource] = {}

    def on(self, event: str, handler: Handler) -> Handler:
        self._events.setdefault(event, EventSource()).add(handler)
        return handler

    def once(self, event: str, handler: Handler) -> Handler:
        def _once(*args, **kwargs):
            self.off(event, _once)
            return handler(*args, **kwargs)
        _once.__wrapped__ = handler
        return self.on(event, _once)

    def off(self, event: str, handler: Handler) -> None:
        source = self._events.get(event)
        if source is None:
            return
        for h in source.handlers():
            if h == handler or getattr(h, "__wrapped__", None) == handler:
                source.remove(h)
                break
        if not len(source):
            self._events.pop(event, None)

    def listener_count(self, event: str) -> int:
        source = self._events.get(event)
        return len(source) if source else 0

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._events.clear()
        else:
            self._events.pop(event, None)

    def emit(self, event: str, *args, **kwargs) -> bool:
        """Fire handlers for `event`; returns True if anyone was listening."""
        source = self._events.get(event)
        if source is None:
            return False
        return source.fire(*args, **kwargs) > 0
