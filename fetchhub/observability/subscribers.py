"""Lifecycle subscribers: logs, Prometheus metrics and OpenTelemetry spans.

Each subscriber is a plain callable ``(event, payload)`` registered on a
hub's EventBus; ``instrument(hub)`` wires all three.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

from fetchhub.dispatch.events import LifecycleEvent, TERMINAL_EVENTS
from fetchhub.dispatch.result import ResponseData
from fetchhub.observability.logging import safe_extra
from fetchhub.observability.metrics import (
    CONNECT_DURATION,
    FETCH_DURATION,
    FETCH_EVENTS_TOTAL,
    FETCH_TIMEOUTS_TOTAL,
    SOCKET_QUEUE_DEPTH,
)
from fetchhub.observability.tracing import TRACER_NAME

_OUTCOMES = {
    LifecycleEvent.SUCCESS: "success",
    LifecycleEvent.FAILURE: "range_error",
    LifecycleEvent.FETCH_ERROR: "transport_error",
}

def _payload_dict(payload: Any) -> dict[str, Any]:
    if isinstance(payload, ResponseData):
        return payload.as_dict()
    return {k: v for k, v in payload.items() if k != "request_options"}


def _method_of(payload: Any) -> str:
    if isinstance(payload, ResponseData):
        return payload.request_options.method
    return payload.get("method") or "unknown"


class LoggingSubscriber:
    """One structured log record per lifecycle event."""

    LEVELS = {
        LifecycleEvent.START: logging.DEBUG,
        LifecycleEvent.CONNECT: logging.DEBUG,
        LifecycleEvent.SUCCESS: logging.INFO,
        LifecycleEvent.FAILURE: logging.WARNING,
        LifecycleEvent.FETCH_ERROR: logging.ERROR,
        LifecycleEvent.SOCKET_QUEUEING: logging.WARNING,
    }

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("fetchhub.events")

    def __call__(self, event: LifecycleEvent, payload: Any) -> None:
        level = self.LEVELS.get(event, logging.INFO)
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            f"fetch_{event.value}",
            extra=safe_extra(_payload_dict(payload)),
        )


class MetricsSubscriber:
    """Feed the Prometheus metrics from lifecycle events."""

    def __call__(self, event: LifecycleEvent, payload: Any) -> None:
        if event is LifecycleEvent.SOCKET_QUEUEING:
            FETCH_EVENTS_TOTAL.labels(event=event.value, method="").inc()
            for host, depth in payload.get("depths", {}).items():
                SOCKET_QUEUE_DEPTH.labels(host=host).set(depth)
            return

        method = _method_of(payload)
        FETCH_EVENTS_TOTAL.labels(event=event.value, method=method).inc()

        if event is LifecycleEvent.CONNECT and payload.connect_duration is not None:
            CONNECT_DURATION.labels(method=method).observe(payload.connect_duration)
        elif event in TERMINAL_EVENTS:
            if payload.get("fetch_duration") is not None:
                FETCH_DURATION.labels(method=method, outcome=_OUTCOMES[event]).observe(
                    payload["fetch_duration"]
                )
            phase = payload.get("deadline")
            if event is LifecycleEvent.FETCH_ERROR and phase is not None:
                FETCH_TIMEOUTS_TOTAL.labels(method=method, phase=phase).inc()


class TracingSubscriber:
    """One CLIENT span per fetch, from ``start`` to its terminal event."""

    def __init__(self, tracer: Optional[trace.Tracer] = None) -> None:
        self._tracer = tracer or trace.get_tracer(TRACER_NAME)
        self._spans: dict[str, Span] = {}

    @property
    def open_spans(self) -> int:
        return len(self._spans)

    def __call__(self, event: LifecycleEvent, payload: Any) -> None:
        if event is LifecycleEvent.START:
            self._start(payload)
        elif event is LifecycleEvent.CONNECT:
            span = self._spans.get(payload.fetch_id)
            if span is not None:
                span.add_event("connect", {"connect_duration": payload.connect_duration})
        elif event in TERMINAL_EVENTS:
            self._finish(event, payload)

    def _start(self, payload: dict[str, Any]) -> None:
        attributes = {
            "http.request.method": payload["method"],
            "url.full": payload["uri"],
            "fetch.id": payload["fetch_id"],
        }
        if payload.get("request_id"):
            attributes["fetch.request_id"] = payload["request_id"]
        self._spans[payload["fetch_id"]] = self._tracer.start_span(
            f"fetch {payload['method']}", kind=SpanKind.CLIENT, attributes=attributes
        )

    def _finish(self, event: LifecycleEvent, payload: dict[str, Any]) -> None:
        span = self._spans.pop(payload.get("fetch_id"), None)
        if span is None:
            return
        status_code = payload.get("status_code")
        if isinstance(status_code, int):
            span.set_attribute("http.response.status_code", status_code)
        if event is LifecycleEvent.SUCCESS:
            span.set_status(Status(StatusCode.OK))
        else:
            if payload.get("code"):
                span.set_attribute("error.type", payload["code"])
            span.set_status(Status(StatusCode.ERROR, payload.get("message") or event.value))
        span.end()


def instrument(hub: Any) -> Callable[[], None]:
    """Attach logging, metrics and tracing subscribers to *hub*.

    Returns a function that detaches all three.
    """
    unsubscribers = [
        hub.events.subscribe(LoggingSubscriber()),
        hub.events.subscribe(MetricsSubscriber()),
        hub.events.subscribe(TracingSubscriber()),
    ]

    def detach() -> None:
        for unsubscribe in unsubscribers:
            unsubscribe()

    return detach
