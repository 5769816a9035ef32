"""Turn a raw transport result into exactly one terminal outcome."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from fetchhub.dispatch.errors import StatusRangeError
from fetchhub.dispatch.events import EventBus, LifecycleEvent
from fetchhub.dispatch.json_body import is_json_response, safe_parse_json
from fetchhub.dispatch.options import FetchRequest
from fetchhub.dispatch.result import FetchOutcome, Outcome, ResponseData

logger = logging.getLogger(__name__)


class ResultNormalizer:
    """Classify ``(error, response, body)`` and deliver the outcome.

    Transport and decode errors become ``fetchError`` and are delivered on
    the next loop iteration, so a caller still wiring up listeners after
    ``fetch()`` returns never misses them.  Responses are checked against
    the accepted status range and delivered immediately as ``success`` or
    ``failure``.
    """

    def __init__(
        self,
        request: FetchRequest,
        response_data: ResponseData,
        elapsed: Callable[[], float],
        events: EventBus,
        deliver: Callable[[FetchOutcome], Any],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.request = request
        self.response_data = response_data
        self.elapsed = elapsed
        self.events = events
        self.deliver = deliver
        self.loop = loop
        self.handled = False

    def handle(self, error: Optional[Exception], response: Optional[httpx.Response], body: Any) -> None:
        if self.handled:
            logger.warning("fetch_result_ignored", extra={"fetch_id": self.request.fetch_id})
            return
        self.handled = True

        parse_json = self.request.parse_json
        if parse_json is None:
            parse_json = is_json_response(response, body)
        if parse_json:
            parse_error, body = safe_parse_json(body, response)
            if error is None:
                error = parse_error

        self.response_data.stamp("fetch_duration", self.elapsed())
        # after redirects the response knows where we actually ended up
        uri = str(response.url) if response is not None else self.request.uri
        log_line = self._log_line(uri, response)

        if error is not None:
            if getattr(error, "response_data", None) is None:
                error.response_data = self.response_data
            code = getattr(error, "code", None)
            log_line["code"] = code
            log_line["message"] = str(error)
            log_line["syscall"] = getattr(error, "syscall", None)
            log_line["deadline"] = getattr(error, "deadline", None)
            if code is not None:
                log_line["status_code"] = code
            logger.debug("<- %s %s", code, uri)
            self.events.emit(LifecycleEvent.FETCH_ERROR, log_line)
            outcome = FetchOutcome(Outcome.TRANSPORT_ERROR, error=error, body=body)
            self.loop.call_soon(self.deliver, outcome)
            return

        min_status = self.request.min_status_code
        max_status = self.request.max_status_code
        logger.debug("<- %s %s", response.status_code, uri)
        if min_status <= response.status_code <= max_status:
            self.events.emit(LifecycleEvent.SUCCESS, log_line)
            outcome = FetchOutcome(
                Outcome.SUCCESS, body=body, response=response, response_data=self.response_data
            )
        else:
            api_error = StatusRangeError(
                response.status_code,
                http_headers=response.headers,
                body=body,
                min_status_code=min_status,
                max_status_code=max_status,
            )
            api_error.response_data = self.response_data
            log_line["min_status_code"] = min_status
            log_line["max_status_code"] = max_status
            self.events.emit(LifecycleEvent.FAILURE, log_line)
            outcome = FetchOutcome(
                Outcome.RANGE_ERROR,
                error=api_error,
                body=body,
                response=response,
                response_data=self.response_data,
            )
        self.deliver(outcome)

    def _log_line(self, uri: str, response: Optional[httpx.Response]) -> dict[str, Any]:
        line = {
            "status_code": response.status_code if response is not None else None,
            "uri": uri,
            "method": self.request.method,
            "connect_duration": self.response_data.connect_duration,
            "completion_duration": self.response_data.completion_duration,
            "fetch_duration": self.response_data.fetch_duration,
            "request_id": self.request.request_id,
            "fetch_id": self.request.fetch_id,
        }
        line.update(self.request.log_data)
        return line
