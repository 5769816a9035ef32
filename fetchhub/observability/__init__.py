"""Observability library: logging, metrics, tracing, lifecycle subscribers."""

from .logging import setup_logging, get_logger, fetch_id_var, request_id_var
from .metrics import (
    FETCH_EVENTS_TOTAL,
    FETCH_DURATION,
    CONNECT_DURATION,
    FETCH_TIMEOUTS_TOTAL,
    SOCKET_QUEUE_DEPTH,
    metrics_app,
)
from .tracing import setup_tracing, get_tracer
from .subscribers import LoggingSubscriber, MetricsSubscriber, TracingSubscriber, instrument

__all__ = [
    "setup_logging",
    "get_logger",
    "fetch_id_var",
    "request_id_var",
    "FETCH_EVENTS_TOTAL",
    "FETCH_DURATION",
    "CONNECT_DURATION",
    "FETCH_TIMEOUTS_TOTAL",
    "SOCKET_QUEUE_DEPTH",
    "metrics_app",
    "setup_tracing",
    "get_tracer",
    "LoggingSubscriber",
    "MetricsSubscriber",
    "TracingSubscriber",
    "instrument",
]
