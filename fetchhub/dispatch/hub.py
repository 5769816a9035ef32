"""The hub: dispatches fetches and wires their deadlines, events and results.

Usage::

    hub = Hub()
    instrument(hub)

    result = await hub.fetch({"uri": "http://inventory/items", "request_id": rid})
    hub.fetch(FetchOptions(uri=url, completion_timeout=2000), callback=on_done)

Every fetch gets a fresh fetch id (sent as ``X-Fetch-ID``), emits ``start``
and then, depending on how far it gets, ``connect`` and exactly one of
``success``, ``failure`` or ``fetchError``.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Mapping, Optional, Union

from fetchhub.dispatch.config import HubConfig
from fetchhub.dispatch.events import EventBus, LifecycleEvent
from fetchhub.dispatch.normalizer import ResultNormalizer
from fetchhub.dispatch.options import FetchOptions, FetchRequest
from fetchhub.dispatch.result import FetchCallback, FetchHandle, ResponseData
from fetchhub.dispatch.timeout import CompletionPhase, ConnectPhase
from fetchhub.dispatch.transport import HttpxTransport, Transport
from fetchhub.observability.logging import fetch_id_var, request_id_var

logger = logging.getLogger(__name__)


def generate_fetch_id() -> str:
    return uuid.uuid1().hex


class Hub:
    """Dispatcher for outbound HTTP calls.

    Args:
        config: default timeouts; read from the environment when omitted
        transport: defaults to an HttpxTransport with its own client
        events: lifecycle event stream; subscribe to it before fetching
        clock: monotonic seconds, used for every duration
    """

    def __init__(
        self,
        config: Optional[HubConfig] = None,
        transport: Optional[Transport] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config or HubConfig.from_env()
        self.transport = transport or HttpxTransport()
        self.events = events or EventBus()
        self._clock = clock

    def fetch(
        self,
        options: Union[FetchOptions, Mapping[str, Any]],
        callback: Optional[FetchCallback] = None,
    ) -> FetchHandle:
        """Start one fetch.

        Raises FetchValidationError for bad options before touching the
        network; every later failure is delivered through the handle.
        Must be called with an event loop running.
        """
        loop = asyncio.get_running_loop()
        options = FetchOptions.coerce(options)
        fetch_id = generate_fetch_id()
        request = FetchRequest.resolve(options, self.config, fetch_id)

        started = self._clock()

        def elapsed() -> float:
            return self._clock() - started

        response_data = ResponseData(
            request_options=request,
            fetch_id=fetch_id,
            request_id=request.request_id,
        )
        handle = FetchHandle(request, loop)
        if callable(callback):
            handle.add_callback(callback)

        # timers and the transport task inherit these for log correlation
        fetch_token = fetch_id_var.set(fetch_id)
        request_token = request_id_var.set(request.request_id or "")
        try:
            logger.debug("-> %s %s", request.method, request.uri)
            start_payload = {"uri": request.uri, "method": request.method}
            start_payload.update(request.log_data)
            start_payload.update(
                request_options=request,
                request_id=request.request_id,
                fetch_id=fetch_id,
            )
            self.events.emit(LifecycleEvent.START, start_payload)
            self._report_socket_queueing()

            normalizer = ResultNormalizer(
                request, response_data, elapsed, self.events, handle.settle, loop
            )
            call = self.transport.request(
                request.uri,
                request.method,
                request.headers,
                content=request.body,
                json=request.json,
                params=request.params,
                timeout=request.timeout,
                on_result=normalizer.handle,
            )
            handle.call = call
            completion = CompletionPhase(call, request.completion_timeout, response_data, elapsed)
            ConnectPhase(
                call, request.connect_timeout, response_data, elapsed, self.events, completion
            ).attach()
        finally:
            request_id_var.reset(request_token)
            fetch_id_var.reset(fetch_token)
        return handle

    def _report_socket_queueing(self) -> None:
        report = self.transport.queue_report()
        if report is None or not report.depths:
            return
        self.events.emit(
            LifecycleEvent.SOCKET_QUEUEING,
            {
                "max_sockets": report.max_sockets,
                "queue_report": report.queue_report,
                "depths": dict(report.depths),
            },
        )

    async def aclose(self) -> None:
        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "Hub":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
