"""fetchhub: outbound HTTP dispatch with connect/completion deadlines and lifecycle events."""

from .dispatch import (
    Hub,
    HubConfig,
    FetchOptions,
    FetchResult,
    FetchError,
    FetchValidationError,
    TransportError,
    ConnectTimeoutError,
    CompletionTimeoutError,
    DecodeError,
    StatusRangeError,
    LifecycleEvent,
)
from .observability import instrument, setup_logging, setup_tracing

__version__ = "1.0.0"

__all__ = [
    "Hub",
    "HubConfig",
    "FetchOptions",
    "FetchResult",
    "FetchError",
    "FetchValidationError",
    "TransportError",
    "ConnectTimeoutError",
    "CompletionTimeoutError",
    "DecodeError",
    "StatusRangeError",
    "LifecycleEvent",
    "instrument",
    "setup_logging",
    "setup_tracing",
]
