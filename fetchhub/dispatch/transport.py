"""Transport calls: one in-flight HTTP request exposed as a stream of signals.

A TransportCall reports its progress through named signals:

- ``request``  the outgoing request object has been built
- ``socket``   a connection attempt has started for the call
- ``connect``  that connection is established
- ``complete`` the full response body has been received
- ``error``    the call failed (emitted right before the error result)

and finishes exactly once by handing ``(error, response, body)`` to its
result callback.  ``abort()`` silences every later signal; whoever aborts
is expected to report the failure through ``fail()``.

HttpxTransport drives these signals from httpcore trace events, so the
connect phase sees the real TCP connect and not just "headers received".
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol

import httpx

from fetchhub.dispatch.errors import transport_error_from

logger = logging.getLogger(__name__)

ResultCallback = Callable[[Optional[Exception], Optional[httpx.Response], Any], None]

# trace events that mean a fresh socket is being opened / is open
_SOCKET_STARTED = {
    "connection.connect_tcp.started",
    "connection.connect_unix_socket.started",
}
_SOCKET_CONNECTED = {
    "connection.connect_tcp.complete",
    "connection.connect_unix_socket.complete",
}
# first event on a pooled connection that was already open
_REQUEST_SENDING = {
    "http11.send_request_headers.started",
    "http2.send_request_headers.started",
}


@dataclass
class SocketQueueReport:
    max_sockets: Optional[int]
    depths: dict[str, int] = field(default_factory=dict)

    @property
    def queue_report(self) -> list[str]:
        return [f"{host}: {count}" for host, count in self.depths.items()]


class TransportCall:
    """Signal plumbing and exactly-once completion shared by all transports."""

    def __init__(self, on_result: ResultCallback) -> None:
        self._listeners: dict[str, list[Callable[..., None]]] = defaultdict(list)
        self._on_result = on_result
        self.aborted = False
        self.finished = False

    def on(self, signal: str, listener: Callable[..., None]) -> "TransportCall":
        self._listeners[signal].append(listener)
        return self

    def abort(self) -> None:
        if self.aborted or self.finished:
            return
        self.aborted = True
        self._cancel()

    def fail(self, error: Exception) -> None:
        """Finish the call with *error*, even after ``abort()``."""
        self._finish(error, None, None)

    def _cancel(self) -> None:
        raise NotImplementedError

    def _signal(self, name: str, *args: Any) -> None:
        if self.aborted:
            return
        self._dispatch(name, *args)

    def _dispatch(self, name: str, *args: Any) -> None:
        for listener in list(self._listeners[name]):
            listener(*args)

    def _complete(self, response: httpx.Response, body: Any) -> None:
        if self.aborted or self.finished:
            return
        self._dispatch("complete", response, body)
        self._finish(None, response, body)

    def _finish(self, error: Optional[Exception], response: Optional[httpx.Response], body: Any) -> None:
        if self.finished:
            return
        self.finished = True
        if error is not None:
            self._dispatch("error", error)
        self._on_result(error, response, body)


class Transport(Protocol):
    def request(
        self,
        uri: str,
        method: str,
        headers: httpx.Headers,
        *,
        content: Any = None,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        timeout: float,
        on_result: ResultCallback,
    ) -> TransportCall: ...

    def queue_report(self) -> Optional[SocketQueueReport]: ...


class HttpxCall(TransportCall):
    """One httpx request running as an asyncio task."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        request_kwargs: dict[str, Any],
        on_result: ResultCallback,
    ) -> None:
        super().__init__(on_result)
        self.request: Optional[httpx.Request] = None
        self._client = client
        self._request_kwargs = request_kwargs
        self._socket_seen = False
        self._connected = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _cancel(self) -> None:
        self._task.cancel()

    async def _run(self) -> None:
        try:
            self.request = self._client.build_request(
                **self._request_kwargs, extensions={"trace": self._trace}
            )
            self._signal("request", self.request)
            response = await self._client.send(self.request)
            body = response.text
        except asyncio.CancelledError:
            if self.aborted:
                return
            raise
        except Exception as exc:
            if self.aborted:
                return
            logger.debug("transport_call_failed", extra={"error": repr(exc)})
            self._finish(transport_error_from(exc), None, None)
            return
        self._complete(response, body)

    async def _trace(self, event_name: str, info: dict) -> None:
        if event_name in _SOCKET_STARTED:
            self._socket()
        elif event_name in _SOCKET_CONNECTED:
            self._connect(info.get("return_value"))
        elif event_name in _REQUEST_SENDING:
            self._socket()
            self._connect(None)

    def _socket(self) -> None:
        if self._socket_seen:
            return
        self._socket_seen = True
        self._signal("socket", self.request)

    def _connect(self, stream: Any) -> None:
        if self._connected:
            return
        self._connected = True
        self._signal("connect", stream)


class HttpxTransport:
    """Transport backed by a shared ``httpx.AsyncClient`` connection pool.

    Args:
        client: client to issue requests on; one is created (and owned)
            when omitted
        follow_redirects: only used for the owned client
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        follow_redirects: bool = True,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=follow_redirects)

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def request(
        self,
        uri: str,
        method: str,
        headers: httpx.Headers,
        *,
        content: Any = None,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        timeout: float,
        on_result: ResultCallback,
    ) -> HttpxCall:
        request_kwargs = {
            "method": method,
            "url": uri,
            "headers": headers,
            "content": content,
            "json": json,
            "params": params,
            "timeout": httpx.Timeout(timeout / 1000.0),
        }
        return HttpxCall(self._client, request_kwargs, on_result)

    def queue_report(self) -> Optional[SocketQueueReport]:
        """Requests waiting for a pooled connection, grouped by host."""
        # httpcore internals, acceptable for observability
        pool = getattr(getattr(self._client, "_transport", None), "_pool", None)
        if pool is None:
            return None
        depths: Counter[str] = Counter()
        for pool_request in list(getattr(pool, "_requests", [])):
            if not pool_request.is_queued():
                continue
            host = pool_request.request.url.host
            if isinstance(host, bytes):
                host = host.decode("ascii", errors="replace")
            depths[host] += 1
        if not depths:
            return None
        return SocketQueueReport(
            max_sockets=getattr(pool, "_max_connections", None),
            depths=dict(depths),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
