from typing import Any, Optional

import httpx
import pytest

from fetchhub.dispatch.config import HubConfig
from fetchhub.dispatch.hub import Hub
from fetchhub.dispatch.transport import SocketQueueReport, TransportCall


class FakeCall(TransportCall):
    """Transport call driven by the test: each method plays one signal."""

    def __init__(self, on_result, **request_kwargs: Any) -> None:
        super().__init__(on_result)
        self.request_kwargs = request_kwargs
        self.abort_calls = 0

    def abort(self) -> None:
        self.abort_calls += 1
        super().abort()

    def _cancel(self) -> None:
        pass

    def assign_socket(self) -> None:
        self._signal("socket", None)

    def connect(self) -> None:
        self._signal("connect", None)

    def respond(
        self,
        status: int = 200,
        body: str = "",
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        request = httpx.Request(self.request_kwargs["method"], self.request_kwargs["uri"])
        response = httpx.Response(status, headers=headers, content=body.encode(), request=request)
        self._complete(response, body)
        return response

    def error(self, exc: Exception) -> None:
        if self.aborted:
            return
        self._finish(exc, None, None)


class FakeTransport:
    def __init__(self) -> None:
        self.calls: list[FakeCall] = []
        self.report: Optional[SocketQueueReport] = None

    def request(self, uri, method, headers, *, content=None, json=None, params=None,
                timeout, on_result) -> FakeCall:
        call = FakeCall(
            on_result,
            uri=uri,
            method=method,
            headers=headers,
            content=content,
            json=json,
            params=params,
            timeout=timeout,
        )
        self.calls.append(call)
        return call

    def queue_report(self) -> Optional[SocketQueueReport]:
        return self.report

    @property
    def last(self) -> FakeCall:
        return self.calls[-1]


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class Recorder:
    """Subscriber that keeps every lifecycle event in order."""

    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, event, payload) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> list[str]:
        return [event.value for event, _ in self.events]

    def payloads(self, name: str) -> list:
        return [payload for event, payload in self.events if event.value == name]


class CallbackSpy:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def __call__(self, *args) -> None:
        self.calls.append(args)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hub(transport, clock) -> Hub:
    return Hub(config=HubConfig(), transport=transport, clock=clock)


@pytest.fixture
def recorder(hub) -> Recorder:
    recorder = Recorder()
    hub.events.subscribe(recorder)
    return recorder


@pytest.fixture
def spy() -> CallbackSpy:
    return CallbackSpy()
