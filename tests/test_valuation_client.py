import threading

import pytest

from asset_valuation.config import Settings
from asset_valuation.domain.models import DetectedObject, ValuationResult
from asset_valuation.valuation.backoff import RetryPolicy
from asset_valuation.valuation.client import (
    CallState,
    MockValuationClient,
    ValuationCall,
    ValuationClient,
    build_client,
)
from asset_valuation.valuation.errors import (
    EmptyInput,
    MalformedUpstreamResponse,
    MissingCredential,
    RetriesExhausted,
    TransportFault,
    UpstreamClientError,
    UpstreamServerError,
    ValuationCancelled,
    offers_manual_retry,
)

from conftest import PROJECTOR, ScriptedTransport, completion, error_response

IMAGE = "data:image/png;base64,iVBORw0KGgo="


def _client(transport, record_sleep, **kwargs):
    return ValuationClient(transport, model="vision-model", sleep=record_sleep, **kwargs)


def test_success_returns_parsed_result(record_sleep, sleeps):
    transport = ScriptedTransport([completion(PROJECTOR)])

    result = _client(transport, record_sleep).valuate(IMAGE)

    assert result == ValuationResult("Projector", 450, (DetectedObject("Cart", 80, 0.7),))
    assert transport.calls == 1
    assert sleeps == []
    assert transport.bodies[0]["messages"][1]["content"][1]["image_url"]["url"] == IMAGE


def test_missing_other_objects_is_not_an_error(record_sleep):
    transport = ScriptedTransport([completion({"mainItem": {"name": "Desk", "estimatedValue": 120}})])

    result = _client(transport, record_sleep).valuate(IMAGE)

    assert result.item_name == "Desk"
    assert result.detected_objects == ()


def test_malformed_primary_item_is_terminal(record_sleep, sleeps):
    transport = ScriptedTransport([completion({"mainItem": {"estimatedValue": 120}}), completion(PROJECTOR)])

    with pytest.raises(MalformedUpstreamResponse):
        _client(transport, record_sleep).valuate(IMAGE)

    assert transport.calls == 1
    assert sleeps == []


def test_transient_failure_then_success_waits_base_delay(record_sleep, sleeps):
    transport = ScriptedTransport([error_response(503, "over capacity"), completion(PROJECTOR)])

    result = _client(transport, record_sleep).valuate(IMAGE)

    assert result.item_name == "Projector"
    assert transport.calls == 2
    assert sleeps == [1.0]


def test_exhaustion_reports_attempts_and_last_error(record_sleep, sleeps):
    transport = ScriptedTransport([error_response(503, "over capacity")])

    with pytest.raises(RetriesExhausted) as info:
        _client(transport, record_sleep).valuate(IMAGE)

    err = info.value
    assert err.attempts == 3
    assert isinstance(err.last_error, UpstreamServerError)
    assert "3 attempts" in str(err)
    assert "over capacity" in str(err)
    assert transport.calls == 3
    assert sleeps == [1.0, 2.0]


def test_client_error_is_not_retried(record_sleep, sleeps):
    transport = ScriptedTransport([error_response(400, "bad request"), completion(PROJECTOR)])

    with pytest.raises(UpstreamClientError) as info:
        _client(transport, record_sleep).valuate(IMAGE)

    assert info.value.upstream_message == "bad request"
    assert "bad request" in str(info.value)
    assert info.value.status_code == 400
    assert transport.calls == 1
    assert sleeps == []


def test_empty_input_fails_before_any_transport_call(record_sleep):
    transport = ScriptedTransport([completion(PROJECTOR)])

    with pytest.raises(EmptyInput):
        _client(transport, record_sleep).valuate("")

    assert transport.calls == 0


def test_repeated_calls_are_identical(record_sleep):
    transport = ScriptedTransport([completion(PROJECTOR)])
    client = _client(transport, record_sleep)

    assert client.valuate(IMAGE) == client.valuate(IMAGE)
    assert transport.calls == 2


def test_transport_fault_is_retried(record_sleep, sleeps):
    transport = ScriptedTransport([TransportFault("connection refused"), completion(PROJECTOR)])

    result = _client(transport, record_sleep).valuate(IMAGE)

    assert result.item_name == "Projector"
    assert transport.calls == 2
    assert sleeps == [1.0]


def test_builtin_connection_error_is_retried_as_transport_fault(record_sleep, sleeps):
    transport = ScriptedTransport([ConnectionRefusedError("refused"), completion(PROJECTOR)])

    result = _client(transport, record_sleep).valuate(IMAGE)

    assert result.item_name == "Projector"
    assert transport.calls == 2
    assert sleeps == [1.0]


def test_exhausted_builtin_connection_errors_keep_transport_fault(record_sleep):
    transport = ScriptedTransport([ConnectionResetError("reset by peer")])

    with pytest.raises(RetriesExhausted) as info:
        _client(transport, record_sleep, policy=RetryPolicy(max_attempts=2)).valuate(IMAGE)

    assert isinstance(info.value.last_error, TransportFault)
    assert "reset by peer" in str(info.value)
    assert transport.calls == 2


def test_unexpected_transport_exception_ends_in_failed_state(record_sleep, sleeps):
    seen = []
    transport = ScriptedTransport([RuntimeError("transport bug"), completion(PROJECTOR)])
    client = _client(transport, record_sleep, on_transition=lambda a, b: seen.append(b))

    with pytest.raises(RuntimeError, match="transport bug"):
        client.valuate(IMAGE)

    assert seen == [CallState.SENDING, CallState.FAILED]
    assert transport.calls == 1
    assert sleeps == []


def test_close_releases_transport_when_supported(record_sleep):
    class ClosableTransport(ScriptedTransport):
        closed = False

        def close(self):
            self.closed = True

    transport = ClosableTransport([completion(PROJECTOR)])
    _client(transport, record_sleep).close()
    assert transport.closed

    # Transports without close() are left alone.
    _client(ScriptedTransport([completion(PROJECTOR)]), record_sleep).close()


def test_server_error_without_body_uses_reason(record_sleep):
    transport = ScriptedTransport([error_response(502, reason="Bad Gateway")])

    with pytest.raises(RetriesExhausted) as info:
        _client(transport, record_sleep, policy=RetryPolicy(max_attempts=1)).valuate(IMAGE)

    assert info.value.attempts == 1
    assert "Bad Gateway" in str(info.value)
    assert transport.calls == 1


def test_state_transitions_for_retry_then_success(record_sleep):
    seen = []
    transport = ScriptedTransport([error_response(500, "boom"), completion(PROJECTOR)])

    _client(transport, record_sleep, on_transition=lambda a, b: seen.append((a, b))).valuate(IMAGE)

    assert seen == [
        (CallState.IDLE, CallState.SENDING),
        (CallState.SENDING, CallState.RETRYING),
        (CallState.RETRYING, CallState.SENDING),
        (CallState.SENDING, CallState.SUCCEEDED),
    ]


def test_state_transitions_for_exhaustion(record_sleep):
    seen = []
    transport = ScriptedTransport([error_response(500, "boom")])
    client = _client(
        transport,
        record_sleep,
        policy=RetryPolicy(max_attempts=2),
        on_transition=lambda a, b: seen.append(b),
    )

    with pytest.raises(RetriesExhausted):
        client.valuate(IMAGE)

    assert seen == [
        CallState.SENDING,
        CallState.RETRYING,
        CallState.SENDING,
        CallState.RETRYING,
        CallState.FAILED,
    ]


def test_illegal_transition_is_rejected():
    call = ValuationCall()
    with pytest.raises(RuntimeError):
        call.advance(CallState.SUCCEEDED)
    call.advance(CallState.SENDING)
    call.advance(CallState.SUCCEEDED)
    assert call.finished
    with pytest.raises(RuntimeError):
        call.advance(CallState.SENDING)


def test_cancel_during_backoff_stops_further_attempts(record_sleep, sleeps):
    cancel = threading.Event()

    class CancellingTransport(ScriptedTransport):
        def send(self, body):
            cancel.set()
            return super().send(body)

    transport = CancellingTransport([error_response(503, "busy"), completion(PROJECTOR)])

    with pytest.raises(ValuationCancelled) as info:
        _client(transport, record_sleep).valuate(IMAGE, cancel=cancel)

    assert info.value.attempts == 1
    assert transport.calls == 1
    assert sleeps == []


def test_cancel_before_start_makes_no_call(record_sleep):
    cancel = threading.Event()
    cancel.set()
    transport = ScriptedTransport([completion(PROJECTOR)])

    with pytest.raises(ValuationCancelled):
        _client(transport, record_sleep).valuate(IMAGE, cancel=cancel)

    assert transport.calls == 0


def test_uncancelled_event_still_retries(record_sleep):
    transport = ScriptedTransport([error_response(503, "busy"), completion(PROJECTOR)])
    client = _client(transport, record_sleep, policy=RetryPolicy(base_delay=0.0))

    assert client.valuate(IMAGE, cancel=threading.Event()).item_name == "Projector"
    assert transport.calls == 2


def test_offers_manual_retry_distinguishes_failures():
    assert offers_manual_retry(RetriesExhausted(3, UpstreamServerError(503, "busy")))
    assert offers_manual_retry(TransportFault("timeout"))
    assert not offers_manual_retry(UpstreamClientError(400, "bad request"))
    assert not offers_manual_retry(MalformedUpstreamResponse("junk"))
    assert not offers_manual_retry(ValueError("other"))


def test_build_client_mocks_without_credential():
    client = build_client(Settings(api_key=None))

    assert isinstance(client, MockValuationClient)
    result = client.valuate(IMAGE)
    assert result.item_name == "Sample Item (Mocked)"
    assert 50 <= result.estimated_value <= 1049
    assert result.detected_objects == ()
    with pytest.raises(EmptyInput):
        client.valuate("")


def test_build_client_without_credential_and_mock_disabled():
    with pytest.raises(MissingCredential):
        build_client(Settings(api_key=None, mock_when_unconfigured=False))


def test_build_client_uses_settings_policy(record_sleep, sleeps):
    transport = ScriptedTransport([error_response(503, "busy")])
    settings = Settings(api_key="gsk_test", model="m", max_attempts=2, base_delay=0.25)

    client = build_client(settings, transport=transport, sleep=record_sleep)

    assert isinstance(client, ValuationClient)
    assert client.model == "m"
    with pytest.raises(RetriesExhausted):
        client.valuate(IMAGE)
    assert transport.calls == 2
    assert sleeps == [0.25]
