import asyncio

import pytest

from fetchhub.dispatch.errors import (
    ConnectTimeoutError,
    CompletionTimeoutError,
    DecodeError,
    FetchValidationError,
    StatusRangeError,
    TransportError,
)
from fetchhub.dispatch.hub import generate_fetch_id
from fetchhub.dispatch.options import FetchOptions
from fetchhub.dispatch.result import FetchResult, Outcome, ResponseData
from fetchhub.dispatch.transport import SocketQueueReport

JSON = {"content-type": "application/json"}


class TestDispatch:
    @pytest.mark.asyncio
    async def test_injects_hub_headers_and_defaults_method(self, hub, transport):
        handle = hub.fetch({"uri": "http://x/ok", "request_id": "req-1",
                            "headers": {"x-fetch-id": "spoofed", "Accept": "text/plain"}})

        sent = transport.last.request_kwargs
        assert sent["method"] == "GET"
        assert sent["headers"]["Connection"] == "close"
        assert sent["headers"]["X-Fetch-ID"] == handle.fetch_id
        assert sent["headers"].get_list("x-fetch-id") == [handle.fetch_id]
        assert sent["headers"]["X-Request-ID"] == "req-1"
        assert sent["headers"]["accept"] == "text/plain"

    @pytest.mark.asyncio
    async def test_method_is_uppercased_and_no_request_id_header_without_one(self, hub, transport):
        hub.fetch(FetchOptions(uri="http://x/ok", method="post", body="payload"))

        sent = transport.last.request_kwargs
        assert sent["method"] == "POST"
        assert sent["content"] == "payload"
        assert "X-Request-ID" not in sent["headers"]

    @pytest.mark.asyncio
    async def test_timeouts_default_from_config(self, hub, transport):
        handle = hub.fetch({"uri": "http://x/ok"})

        assert transport.last.request_kwargs["timeout"] == 10000
        assert handle.request.connect_timeout == 1000
        assert handle.request.completion_timeout is None

    @pytest.mark.asyncio
    async def test_uri_object_with_href(self, hub, transport):
        class Target:
            href = "http://x/from-href"

        hub.fetch({"uri": Target()})

        assert transport.last.request_kwargs["uri"] == "http://x/from-href"

    def test_fetch_ids_are_unique_and_hyphen_free(self):
        ids = {generate_fetch_id() for _ in range(100)}
        assert len(ids) == 100
        assert all("-" not in fetch_id for fetch_id in ids)


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["timeout", "connect_timeout", "completion_timeout"])
    @pytest.mark.parametrize("value", ["100", True, [5]])
    async def test_non_numeric_timeout_fails_before_dispatch(self, hub, transport, recorder, field, value):
        with pytest.raises(FetchValidationError, match="Invalid timeout"):
            hub.fetch({"uri": "http://x/ok", field: value})

        assert transport.calls == []
        assert recorder.events == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [float("nan"), float("inf"), -5])
    async def test_non_finite_or_negative_timeout_is_rejected(self, hub, transport, value):
        with pytest.raises(FetchValidationError, match="Invalid timeout"):
            hub.fetch({"uri": "http://x/ok", "connect_timeout": value})

        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_unknown_option_is_rejected(self, hub):
        with pytest.raises(FetchValidationError, match="Unknown fetch options"):
            hub.fetch({"uri": "http://x/ok", "retries": 3})

    @pytest.mark.asyncio
    async def test_validation_error_is_a_value_error(self, hub):
        with pytest.raises(ValueError):
            hub.fetch({"uri": "http://x/ok", "timeout": "soon"})


class TestEvents:
    @pytest.mark.asyncio
    async def test_start_event_carries_ids_and_log_data(self, hub, recorder):
        handle = hub.fetch({"uri": "http://x/ok", "request_id": "req-1",
                            "log_data": {"caller": "inventory"}})

        assert recorder.names == ["start"]
        start = recorder.payloads("start")[0]
        assert start["uri"] == "http://x/ok"
        assert start["method"] == "GET"
        assert start["caller"] == "inventory"
        assert start["request_id"] == "req-1"
        assert start["fetch_id"] == handle.fetch_id
        assert start["request_options"] is handle.request

    @pytest.mark.asyncio
    async def test_socket_queueing_reported_after_start(self, hub, transport, recorder):
        transport.report = SocketQueueReport(max_sockets=10, depths={"x": 3, "y": 1})

        hub.fetch({"uri": "http://x/ok"})

        assert recorder.names == ["start", "socketQueueing"]
        payload = recorder.payloads("socketQueueing")[0]
        assert payload["max_sockets"] == 10
        assert payload["queue_report"] == ["x: 3", "y: 1"]

    @pytest.mark.asyncio
    async def test_empty_queue_is_not_reported(self, hub, transport, recorder):
        transport.report = SocketQueueReport(max_sockets=10)

        hub.fetch({"uri": "http://x/ok"})

        assert recorder.names == ["start"]

    @pytest.mark.asyncio
    async def test_event_order_for_a_successful_fetch(self, hub, transport, recorder):
        handle = hub.fetch({"uri": "http://x/ok"})
        transport.last.assign_socket()
        transport.last.connect()
        transport.last.respond(200, "ok")
        await handle

        assert recorder.names == ["start", "connect", "success"]
        assert isinstance(recorder.payloads("connect")[0], ResponseData)

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_the_fetch(self, hub, transport, recorder):
        def explode(event, payload):
            raise RuntimeError("listener bug")

        hub.events.subscribe(explode)
        handle = hub.fetch({"uri": "http://x/ok"})
        transport.last.respond(200, "ok")

        result = await handle
        assert result.body == "ok"
        assert recorder.names == ["start", "success"]


class TestSuccess:
    @pytest.mark.asyncio
    async def test_json_204_in_range(self, hub, transport, recorder, spy):
        handle = hub.fetch({"uri": "http://x/ok", "min_status_code": 200, "max_status_code": 299}, spy)
        response = transport.last.respond(204, "{}", headers=JSON)

        assert len(spy.calls) == 1
        error, body, delivered_response, response_data = spy.calls[0]
        assert error is None
        assert body == {}
        assert delivered_response is response
        assert response_data.fetch_id == handle.fetch_id
        assert recorder.names == ["start", "success"]

        result = await handle
        assert isinstance(result, FetchResult)
        assert result.body == {}
        assert result.response is response
        assert result.response_data is response_data
        assert handle.outcome.kind is Outcome.SUCCESS

    @pytest.mark.asyncio
    async def test_success_log_line(self, hub, transport, recorder, clock):
        hub.fetch({"uri": "http://x/ok", "request_id": "req-1", "log_data": {"caller": "orders"}})
        clock.now += 0.25
        transport.last.respond(200, "ok")

        line = recorder.payloads("success")[0]
        assert line["status_code"] == 200
        assert line["uri"] == "http://x/ok"
        assert line["method"] == "GET"
        assert line["fetch_duration"] == pytest.approx(0.25)
        assert line["request_id"] == "req-1"
        assert line["caller"] == "orders"

    @pytest.mark.asyncio
    async def test_custom_range_accepts_404(self, hub, transport, spy):
        hub.fetch({"uri": "http://x/missing", "max_status_code": 499}, spy)
        transport.last.respond(404, "nope")

        assert spy.calls[0][0] is None
        assert spy.calls[0][1] == "nope"

    @pytest.mark.asyncio
    async def test_parse_json_false_keeps_raw_body(self, hub, transport):
        handle = hub.fetch({"uri": "http://x/ok", "parse_json": False})
        transport.last.respond(200, '{"a": 1}', headers=JSON)

        assert (await handle).body == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_parse_json_true_without_content_type(self, hub, transport):
        handle = hub.fetch({"uri": "http://x/ok", "parse_json": True})
        transport.last.respond(200, '[1, 2]', headers={"content-type": "text/plain"})

        assert (await handle).body == [1, 2]

    @pytest.mark.asyncio
    async def test_callback_added_after_settle_still_fires(self, hub, transport, spy):
        handle = hub.fetch({"uri": "http://x/ok"})
        transport.last.respond(200, "ok")

        handle.add_callback(spy)
        assert spy.calls == []
        await asyncio.sleep(0)
        assert spy.calls[0][1] == "ok"


class TestRangeFailure:
    @pytest.mark.asyncio
    async def test_500_is_a_range_error(self, hub, transport, recorder, spy):
        handle = hub.fetch({"uri": "http://x/boom", "min_status_code": 200, "max_status_code": 299}, spy)
        response = transport.last.respond(500, '{"error": "db down"}',
                                          headers={**JSON, "x-trace": "abc"})

        error, body, delivered_response, response_data = spy.calls[0]
        assert isinstance(error, StatusRangeError)
        assert error.status_code == 500
        assert error.min_status_code == 200
        assert error.max_status_code == 299
        assert error.type == "api_response_error"
        assert error.http_headers["x-trace"] == "abc"
        assert error.body == {"error": "db down"}
        assert "code: 500, range: [200, 299]" in str(error)
        assert body == {"error": "db down"}
        assert delivered_response is response
        assert response_data is not None

        assert recorder.names == ["start", "failure"]
        line = recorder.payloads("failure")[0]
        assert line["min_status_code"] == 200
        assert line["max_status_code"] == 299

        with pytest.raises(StatusRangeError):
            await handle

    @pytest.mark.asyncio
    async def test_range_error_is_delivered_synchronously(self, hub, transport, spy):
        hub.fetch({"uri": "http://x/boom"}, spy)
        transport.last.respond(302, "")

        assert len(spy.calls) == 1


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_error_delivery_is_deferred_one_tick(self, hub, transport, recorder, spy):
        handle = hub.fetch({"uri": "http://x/ok"}, spy)
        error = TransportError("socket hang up", code="ECONNRESET", syscall="read")
        transport.last.error(error)

        assert recorder.names == ["start", "fetchError"]
        assert spy.calls == []
        await asyncio.sleep(0)
        assert spy.calls == [(error, None, None, None)]
        with pytest.raises(TransportError):
            await handle

    @pytest.mark.asyncio
    async def test_fetch_error_log_line(self, hub, transport, recorder):
        handle = hub.fetch({"uri": "http://x/ok", "request_id": "req-1"})
        transport.last.error(TransportError("refused", code="ECONNREFUSED", syscall="connect"))

        line = recorder.payloads("fetchError")[0]
        assert line["code"] == "ECONNREFUSED"
        assert line["status_code"] == "ECONNREFUSED"
        assert line["message"] == "refused"
        assert line["syscall"] == "connect"
        assert line["uri"] == "http://x/ok"
        assert line["request_id"] == "req-1"
        assert line["fetch_id"] == handle.fetch_id
        with pytest.raises(TransportError) as excinfo:
            await handle
        assert excinfo.value.response_data.fetch_id == handle.fetch_id

    @pytest.mark.asyncio
    async def test_malformed_json_is_a_decode_error(self, hub, transport, recorder, spy):
        handle = hub.fetch({"uri": "http://x/ok"}, spy)
        transport.last.respond(200, "{not json", headers=JSON)

        assert recorder.names == ["start", "fetchError"]
        await asyncio.sleep(0)
        error, body, response, response_data = spy.calls[0]
        assert isinstance(error, DecodeError)
        assert body == "{not json"
        assert error.body == "{not json"
        assert error.status_code == 200
        with pytest.raises(DecodeError):
            await handle

    @pytest.mark.asyncio
    async def test_late_signals_after_result_are_ignored(self, hub, transport, recorder, spy):
        hub.fetch({"uri": "http://x/ok"}, spy)
        call = transport.last
        call.respond(200, "ok")
        call.error(TransportError("late"))
        call.respond(500, "again")
        await asyncio.sleep(0.01)

        assert len(spy.calls) == 1
        assert recorder.names == ["start", "success"]


class TestConnectPhase:
    @pytest.mark.asyncio
    async def test_connect_timeout_aborts_once(self, hub, transport, recorder, spy, clock):
        handle = hub.fetch({"uri": "http://x/slow", "method": "put", "connect_timeout": 50}, spy)
        call = transport.last
        call.assign_socket()
        clock.now += 0.05

        with pytest.raises(ConnectTimeoutError) as excinfo:
            await handle

        error = excinfo.value
        assert error.code == "ECONNECTTIMEDOUT"
        assert str(error) == "Connecting to PUT http://x/slow timed out after 50ms"
        assert call.abort_calls == 1
        assert call.aborted
        assert error.response_data.connect_duration == pytest.approx(0.05)
        assert spy.calls == [(error, None, None, None)]
        assert recorder.names == ["start", "fetchError"]
        assert recorder.payloads("fetchError")[0]["code"] == "ECONNECTTIMEDOUT"

    @pytest.mark.asyncio
    async def test_signals_after_connect_timeout_are_suppressed(self, hub, transport, recorder, spy):
        handle = hub.fetch({"uri": "http://x/slow", "connect_timeout": 10}, spy)
        call = transport.last
        call.assign_socket()
        with pytest.raises(ConnectTimeoutError):
            await handle

        call.connect()
        call.respond(200, "too late")
        await asyncio.sleep(0)

        assert len(spy.calls) == 1
        assert "connect" not in recorder.names
        assert "success" not in recorder.names

    @pytest.mark.asyncio
    async def test_connect_before_deadline_wins(self, hub, transport, recorder, spy, clock):
        handle = hub.fetch({"uri": "http://x/ok", "connect_timeout": 20}, spy)
        call = transport.last
        call.assign_socket()
        clock.now += 0.005
        call.connect()
        await asyncio.sleep(0.05)
        call.respond(200, "ok")

        result = await handle
        assert result.body == "ok"
        assert result.response_data.connect_duration == pytest.approx(0.005)
        assert call.abort_calls == 0
        assert recorder.names == ["start", "connect", "success"]

    @pytest.mark.asyncio
    async def test_no_timer_until_socket_is_assigned(self, hub, transport, spy):
        handle = hub.fetch({"uri": "http://x/queued", "connect_timeout": 10}, spy)
        await asyncio.sleep(0.05)
        transport.last.respond(200, "ok")

        assert (await handle).body == "ok"
        assert transport.last.abort_calls == 0

    @pytest.mark.asyncio
    async def test_transport_error_disarms_connect_timer(self, hub, transport, recorder, spy):
        hub.fetch({"uri": "http://x/ok", "connect_timeout": 20}, spy)
        call = transport.last
        call.assign_socket()
        call.error(TransportError("refused", code="ECONNREFUSED"))
        await asyncio.sleep(0.05)

        assert len(spy.calls) == 1
        assert spy.calls[0][0].code == "ECONNREFUSED"
        assert call.abort_calls == 0
        assert recorder.names == ["start", "fetchError"]


class TestCompletionPhase:
    @pytest.mark.asyncio
    async def test_completion_timeout_after_connect(self, hub, transport, recorder, spy, clock):
        handle = hub.fetch({"uri": "http://x/slow", "completion_timeout": 30}, spy)
        call = transport.last
        call.assign_socket()
        clock.now += 0.01
        call.connect()
        clock.now += 0.03

        with pytest.raises(CompletionTimeoutError) as excinfo:
            await handle

        error = excinfo.value
        assert error.code == "ETIMEDOUT"
        assert str(error) == "Response timed out after 30ms"
        assert call.abort_calls == 1
        assert error.response_data.connect_duration == pytest.approx(0.01)
        assert error.response_data.completion_duration == pytest.approx(0.03)
        assert recorder.names == ["start", "connect", "fetchError"]

    @pytest.mark.asyncio
    async def test_completion_before_deadline(self, hub, transport, spy, clock):
        handle = hub.fetch({"uri": "http://x/ok", "completion_timeout": 50}, spy)
        call = transport.last
        call.assign_socket()
        clock.now += 0.002
        call.connect()
        clock.now += 0.01
        call.respond(200, "ok")
        await asyncio.sleep(0.08)

        result = await handle
        assert result.response_data.completion_duration == pytest.approx(0.01)
        assert result.response_data.fetch_duration == pytest.approx(0.012)
        assert call.abort_calls == 0
        assert len(spy.calls) == 1

    @pytest.mark.asyncio
    async def test_completion_deadline_starts_at_connect(self, hub, transport, recorder):
        handle = hub.fetch({"uri": "http://x/slow-connect", "completion_timeout": 30})
        call = transport.last
        call.assign_socket()
        await asyncio.sleep(0.06)
        call.connect()
        await asyncio.sleep(0.01)
        call.respond(200, "ok")

        assert (await handle).body == "ok"
        assert call.abort_calls == 0
        assert recorder.names == ["start", "connect", "success"]

    @pytest.mark.asyncio
    async def test_absent_completion_timeout_never_aborts(self, hub, transport, spy):
        handle = hub.fetch({"uri": "http://x/slow", "connect_timeout": 10}, spy)
        call = transport.last
        call.assign_socket()
        call.connect()
        await asyncio.sleep(0.05)
        call.respond(200, "eventually")

        result = await handle
        assert result.body == "eventually"
        assert result.response_data.completion_duration is None
        assert call.abort_calls == 0

    @pytest.mark.asyncio
    async def test_zero_completion_timeout_disables_the_phase(self, hub, transport):
        handle = hub.fetch({"uri": "http://x/slow", "completion_timeout": 0})
        call = transport.last
        call.assign_socket()
        call.connect()
        await asyncio.sleep(0.02)
        call.respond(200, "ok")

        assert (await handle).body == "ok"
        assert handle.request.completion_timeout is None


class TestConcurrentFetches:
    @pytest.mark.asyncio
    async def test_interleaved_fetches_keep_their_own_state(self, hub, transport):
        slow = hub.fetch({"uri": "http://x/slow", "connect_timeout": 20})
        fast = hub.fetch({"uri": "http://x/fast", "connect_timeout": 20})
        slow_call, fast_call = transport.calls
        slow_call.assign_socket()
        fast_call.assign_socket()
        fast_call.connect()
        fast_call.respond(200, "fast")

        assert (await fast).body == "fast"
        with pytest.raises(ConnectTimeoutError):
            await slow
        assert fast_call.abort_calls == 0
        assert slow_call.abort_calls == 1
        assert slow.fetch_id != fast.fetch_id


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_raising_callback_does_not_starve_the_others(self, hub, transport, spy, caplog):
        def broken(*args):
            raise RuntimeError("consumer bug")

        handle = hub.fetch({"uri": "http://x/ok"}, broken)
        handle.add_callback(spy)

        transport.last.respond(200, "ok")

        assert len(spy.calls) == 1
        assert spy.calls[0][1] == "ok"
        assert (await handle).body == "ok"
        failed = [r for r in caplog.records if r.getMessage() == "fetch_callback_failed"]
        assert len(failed) == 1
        assert failed[0].fetch_id == handle.fetch_id
