"""Per-call response bookkeeping and the callback/awaitable result handle."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generator, NamedTuple, Optional

import httpx

from fetchhub.dispatch.options import FetchRequest
from fetchhub.dispatch.transport import TransportCall

logger = logging.getLogger(__name__)

FetchCallback = Callable[[Optional[Exception], Any, Optional[httpx.Response], Optional["ResponseData"]], None]

_DURATIONS = ("connect_duration", "completion_duration", "fetch_duration")


@dataclass
class ResponseData:
    """Timing and identity of one fetch.  Durations are seconds."""

    request_options: FetchRequest
    fetch_id: str
    request_id: Optional[str] = None
    connect_duration: Optional[float] = None
    completion_duration: Optional[float] = None
    fetch_duration: Optional[float] = None

    def stamp(self, name: str, value: float) -> bool:
        """Set duration *name* unless it is already set; returns whether it was."""
        if name not in _DURATIONS:
            raise AttributeError(f"ResponseData has no duration {name!r}")
        if getattr(self, name) is not None:
            logger.debug("duration_already_stamped", extra={"duration": name})
            return False
        setattr(self, name, value)
        return True

    def as_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "fetch_id": self.fetch_id,
            "connect_duration": self.connect_duration,
            "completion_duration": self.completion_duration,
            "fetch_duration": self.fetch_duration,
        }


class Outcome(str, Enum):
    TRANSPORT_ERROR = "transport_error"
    RANGE_ERROR = "range_error"
    SUCCESS = "success"


@dataclass(frozen=True)
class FetchOutcome:
    kind: Outcome
    error: Optional[Exception] = None
    body: Any = None
    response: Optional[httpx.Response] = None
    response_data: Optional[ResponseData] = None

    def callback_args(self) -> tuple:
        if self.kind is Outcome.TRANSPORT_ERROR:
            return (self.error, self.body, None, None)
        return (self.error, self.body, self.response, self.response_data)


class FetchResult(NamedTuple):
    body: Any
    response: httpx.Response
    response_data: ResponseData


class FetchHandle:
    """What ``Hub.fetch`` returns.

    Registered callbacks receive ``(error, body, response, response_data)``;
    awaiting the handle returns a FetchResult or raises the error.  Both see
    the same single outcome.
    """

    def __init__(self, request: FetchRequest, loop: asyncio.AbstractEventLoop) -> None:
        self.request = request
        self.call: Optional[TransportCall] = None
        self._loop = loop
        self._callbacks: list[FetchCallback] = []
        self._outcome: Optional[FetchOutcome] = None
        self._future: Optional[asyncio.Future] = None

    @property
    def fetch_id(self) -> str:
        return self.request.fetch_id

    def done(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> Optional[FetchOutcome]:
        return self._outcome

    def add_callback(self, callback: FetchCallback) -> "FetchHandle":
        if self._outcome is None:
            self._callbacks.append(callback)
        else:
            self._loop.call_soon(callback, *self._outcome.callback_args())
        return self

    def on(self, signal: str, listener: Callable[..., None]) -> "FetchHandle":
        """Listen to a raw transport signal (``request``, ``socket``, ...)."""
        self.call.on(signal, listener)
        return self

    def as_future(self) -> asyncio.Future:
        # created on demand so callback-only callers never leave an
        # unretrieved exception behind
        if self._future is None:
            self._future = self._loop.create_future()
            if self._outcome is not None:
                self._resolve_future(self._outcome)
        return self._future

    def __await__(self) -> Generator[Any, None, FetchResult]:
        return self.as_future().__await__()

    def settle(self, outcome: FetchOutcome) -> bool:
        if self._outcome is not None:
            logger.warning(
                "fetch_settled_twice",
                extra={"fetch_id": self.fetch_id, "outcome": outcome.kind.value},
            )
            return False
        self._outcome = outcome
        if self._future is not None:
            self._resolve_future(outcome)
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(*outcome.callback_args())
            except Exception:
                logger.exception(
                    "fetch_callback_failed",
                    extra={"fetch_id": self.fetch_id, "outcome": outcome.kind.value},
                )
        return True

    def _resolve_future(self, outcome: FetchOutcome) -> None:
        if self._future.done():
            return
        if outcome.error is not None:
            self._future.set_exception(outcome.error)
        else:
            self._future.set_result(
                FetchResult(outcome.body, outcome.response, outcome.response_data)
            )
