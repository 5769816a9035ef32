"""Request dispatch: connect/completion deadlines, lifecycle events, results."""

from .config import HubConfig, DEFAULT_CONNECT_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from .errors import (
    FetchError,
    FetchValidationError,
    TransportError,
    ConnectTimeoutError,
    CompletionTimeoutError,
    DecodeError,
    StatusRangeError,
)
from .events import EventBus, LifecycleEvent
from .options import FetchOptions, FetchRequest
from .result import FetchHandle, FetchOutcome, FetchResult, Outcome, ResponseData
from .timeout import DeadlineTimer, TimerState, ConnectPhase, CompletionPhase
from .transport import HttpxTransport, SocketQueueReport, Transport, TransportCall
from .hub import Hub, generate_fetch_id

__all__ = [
    "HubConfig",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_REQUEST_TIMEOUT",
    "FetchError",
    "FetchValidationError",
    "TransportError",
    "ConnectTimeoutError",
    "CompletionTimeoutError",
    "DecodeError",
    "StatusRangeError",
    "EventBus",
    "LifecycleEvent",
    "FetchOptions",
    "FetchRequest",
    "FetchHandle",
    "FetchOutcome",
    "FetchResult",
    "Outcome",
    "ResponseData",
    "DeadlineTimer",
    "TimerState",
    "ConnectPhase",
    "CompletionPhase",
    "HttpxTransport",
    "SocketQueueReport",
    "Transport",
    "TransportCall",
    "Hub",
    "generate_fetch_id",
]
