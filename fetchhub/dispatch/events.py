"""Lifecycle event stream.

The hub broadcasts one event per lifecycle step to every subscriber, in
subscription order, synchronously.  Emission never waits on a subscriber
and a failing subscriber never affects the fetch or the other subscribers.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class LifecycleEvent(str, Enum):
    START = "start"
    CONNECT = "connect"
    SUCCESS = "success"
    FAILURE = "failure"
    FETCH_ERROR = "fetchError"
    SOCKET_QUEUEING = "socketQueueing"


TERMINAL_EVENTS = frozenset({
    LifecycleEvent.SUCCESS,
    LifecycleEvent.FAILURE,
    LifecycleEvent.FETCH_ERROR,
})

Listener = Callable[[LifecycleEvent, Any], None]


class EventBus:
    """Fan-out of lifecycle events to any number of independent listeners."""

    def __init__(self) -> None:
        self._listeners: list[tuple[Listener, Optional[frozenset[LifecycleEvent]]]] = []

    def subscribe(
        self,
        listener: Listener,
        events: Optional[Iterable[LifecycleEvent]] = None,
    ) -> Callable[[], None]:
        """Register *listener* for *events* (all events when omitted).

        Returns a function that removes the subscription.
        """
        entry = (listener, frozenset(LifecycleEvent(e) for e in events) if events else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def on(self, event: LifecycleEvent, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe *handler* to a single event; it receives only the payload."""
        return self.subscribe(lambda _event, payload: handler(payload), [event])

    def emit(self, event: LifecycleEvent, payload: Any) -> None:
        for listener, events in list(self._listeners):
            if events is not None and event not in events:
                continue
            try:
                listener(event, payload)
            except Exception:
                logger.exception("event_listener_failed", extra={"event": event.value})

    def __len__(self) -> int:
        return len(self._listeners)
