"""Connect and completion deadlines for a single transport call.

Two phases race the call against independent deadlines:

- ConnectPhase arms when the call reports its socket and settles on the
  first of "connected" or "connect deadline elapsed".
- CompletionPhase arms once connected (only if a completion timeout is
  configured) and settles on the first of "complete" or "deadline elapsed".

A phase that loses to its deadline aborts the call and reports a synthetic
timeout error through ``call.fail()``.  Each phase carries a ``settled``
flag checked before acting, so a late signal or a late timer is a no-op.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from fetchhub.dispatch.errors import CompletionTimeoutError, ConnectTimeoutError
from fetchhub.dispatch.events import EventBus, LifecycleEvent
from fetchhub.dispatch.result import ResponseData
from fetchhub.dispatch.transport import TransportCall

logger = logging.getLogger(__name__)

Elapsed = Callable[[], float]


class TimerState(str, Enum):
    ARMED = "armed"
    FIRED = "fired"
    CANCELLED = "cancelled"


class DeadlineTimer:
    """Single-shot countdown that runs *on_fire* unless cancelled first.

    Args:
        delay_ms: countdown in milliseconds, starting now
        on_fire: called with no arguments, at most once
        loop: defaults to the running loop
    """

    def __init__(
        self,
        delay_ms: float,
        on_fire: Callable[[], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.delay_ms = delay_ms
        self._on_fire = on_fire
        self._state = TimerState.ARMED
        loop = loop or asyncio.get_running_loop()
        self._handle: Optional[asyncio.TimerHandle] = loop.call_later(
            delay_ms / 1000.0, self._fire
        )

    @property
    def state(self) -> TimerState:
        return self._state

    def cancel(self) -> None:
        if self._state != TimerState.ARMED:
            return
        self._state = TimerState.CANCELLED
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        if self._state != TimerState.ARMED:
            return
        self._state = TimerState.FIRED
        self._handle = None
        self._on_fire()


class CompletionPhase:
    """Race the call's ``complete`` signal against the completion timeout.

    Inert when *completion_timeout* is falsy: ``activate()`` then creates
    no timer and the response may take as long as the transport allows.
    """

    def __init__(
        self,
        call: TransportCall,
        completion_timeout: Optional[float],
        response_data: ResponseData,
        elapsed: Elapsed,
    ) -> None:
        self.call = call
        self.completion_timeout = completion_timeout
        self.response_data = response_data
        self.elapsed = elapsed
        self.timer: Optional[DeadlineTimer] = None
        self.settled = False

    @property
    def enabled(self) -> bool:
        return bool(self.completion_timeout)

    def activate(self) -> None:
        if not self.enabled or self.timer is not None or self.settled:
            return
        self.call.on("complete", self._completed)
        self.call.on("error", self._stand_down)
        self.timer = DeadlineTimer(self.completion_timeout, self._timed_out)

    def _completed(self, *_: Any) -> None:
        if self.settled:
            return
        self.settled = True
        self.timer.cancel()
        self._stamp()

    def _stand_down(self, *_: Any) -> None:
        if self.settled:
            return
        self.settled = True
        self.timer.cancel()

    def _timed_out(self) -> None:
        if self.settled:
            return
        self.settled = True
        self.call.abort()
        self._stamp()
        logger.warning(
            "fetch_completion_timeout",
            extra={"timeout_ms": self.completion_timeout, "fetch_id": self.response_data.fetch_id},
        )
        error = CompletionTimeoutError(
            f"Response timed out after {_format_ms(self.completion_timeout)}ms"
        )
        error.response_data = self.response_data
        self.call.fail(error)

    def _stamp(self) -> None:
        connect_duration = self.response_data.connect_duration or 0.0
        self.response_data.stamp("completion_duration", self.elapsed() - connect_duration)


class ConnectPhase:
    """Race the call's socket ``connect`` against the connect timeout.

    On connect, emits the ``connect`` lifecycle event and hands over to
    *completion*.
    """

    def __init__(
        self,
        call: TransportCall,
        connect_timeout: float,
        response_data: ResponseData,
        elapsed: Elapsed,
        events: EventBus,
        completion: CompletionPhase,
    ) -> None:
        self.call = call
        self.connect_timeout = connect_timeout
        self.response_data = response_data
        self.elapsed = elapsed
        self.events = events
        self.completion = completion
        self.timer: Optional[DeadlineTimer] = None
        self.settled = False

    def attach(self) -> "ConnectPhase":
        self.call.on("socket", self._socket_assigned)
        self.call.on("connect", self._connected)
        self.call.on("error", self._stand_down)
        # a response without a connect signal still ends the race
        self.call.on("complete", self._stand_down)
        return self

    def _socket_assigned(self, *_: Any) -> None:
        if self.settled or self.timer is not None:
            return
        self.timer = DeadlineTimer(self.connect_timeout, self._timed_out)

    def _connected(self, *_: Any) -> None:
        if self.settled:
            return
        self.settled = True
        if self.timer is not None:
            self.timer.cancel()
        self.response_data.stamp("connect_duration", self.elapsed())
        self.events.emit(LifecycleEvent.CONNECT, self.response_data)
        self.completion.activate()

    def _stand_down(self, *_: Any) -> None:
        if self.settled:
            return
        self.settled = True
        if self.timer is not None:
            self.timer.cancel()

    def _timed_out(self) -> None:
        if self.settled:
            return
        self.settled = True
        self.call.abort()
        self.response_data.stamp("connect_duration", self.elapsed())
        request = self.response_data.request_options
        logger.warning(
            "fetch_connect_timeout",
            extra={"timeout_ms": self.connect_timeout, "fetch_id": self.response_data.fetch_id},
        )
        error = ConnectTimeoutError(
            f"Connecting to {request.method} {request.uri} timed out "
            f"after {_format_ms(self.connect_timeout)}ms"
        )
        error.response_data = self.response_data
        self.call.fail(error)


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
