"""Structured JSON logging setup.

Every log record includes:
- timestamp (ISO-8601)
- level
- logger name
- service name (from SERVICE_NAME env var)
- fetch_id / request_id (from contextvars, set by the hub for each fetch)
- trace_id / span_id (if an OpenTelemetry span is active)
- message
- any extra kwargs
"""
from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextvars import ContextVar

from opentelemetry import trace as otel_trace

fetch_id_var: ContextVar[str] = ContextVar("fetch_id", default="")
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
SERVICE_NAME = os.getenv("SERVICE_NAME", "unknown")

# LogRecord attributes that must never be copied into the JSON body
_RECORD_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName", "asctime",
})


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        trace_id = ""
        span_id = ""
        ctx = otel_trace.get_current_span().get_span_context()
        if ctx.is_valid:
            trace_id = format(ctx.trace_id, "032x")
            span_id = format(ctx.span_id, "016x")

        log_entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
                         + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "service": SERVICE_NAME,
            "fetch_id": fetch_id_var.get(""),
            "request_id": request_id_var.get(""),
            "trace_id": trace_id,
            "span_id": span_id,
            "message": record.getMessage(),
        }

        # Merge any extra fields added via extra={} in log calls
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def safe_extra(fields: dict) -> dict:
    """Rename keys that would clash with LogRecord attributes (e.g. ``message``)."""
    return {
        (f"fetch_{key}" if key in _RECORD_ATTRS else key): value
        for key, value in fields.items()
    }


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger to emit structured JSON."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # httpx logs one INFO line per request; the lifecycle subscribers cover that
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
