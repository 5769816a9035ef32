"""Prometheus metrics definitions for the fetch hub.

All metrics are created here so import order doesn't matter.  The
MetricsSubscriber feeds them from hub lifecycle events; an application that
never instruments its hub simply leaves them at zero.
"""
from prometheus_client import Counter, Gauge, Histogram, make_asgi_app

_DURATION_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30]

# ── Lifecycle ───────────────────────────────────────────────────────────────
FETCH_EVENTS_TOTAL = Counter(
    "fetch_events_total",
    "Lifecycle events emitted by the hub",
    ["event", "method"],
)

FETCH_DURATION = Histogram(
    "fetch_duration_seconds",
    "Total time from dispatch to terminal outcome",
    ["method", "outcome"],
    buckets=_DURATION_BUCKETS,
)

CONNECT_DURATION = Histogram(
    "fetch_connect_duration_seconds",
    "Time from dispatch to socket connect",
    ["method"],
    buckets=_DURATION_BUCKETS,
)

# ── Timeouts ────────────────────────────────────────────────────────────────
FETCH_TIMEOUTS_TOTAL = Counter(
    "fetch_timeouts_total",
    "Fetches aborted by a connect or completion deadline",
    ["method", "phase"],
)

# ── Connection pool pressure ────────────────────────────────────────────────
SOCKET_QUEUE_DEPTH = Gauge(
    "fetch_socket_queue_depth",
    "Requests waiting for a pooled connection, per host",
    ["host"],
)

# ASGI app that Prometheus can scrape
metrics_app = make_asgi_app()
