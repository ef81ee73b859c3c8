"""Valuation client: send the request, retry transient failures, return a result."""

from __future__ import annotations

import random
import threading
import time
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from ..config import Settings
from ..domain.models import RetryState, ValuationResult
from ..logging import get_logger
from .backoff import RetryPolicy, next_retry
from .errors import (
    EmptyInput,
    MissingCredential,
    RetriesExhausted,
    TransportFault,
    UpstreamClientError,
    UpstreamServerError,
    ValuationCancelled,
    ValuationError,
)
from .request import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    build_request_body,
    parse_completion,
    upstream_error_message,
)
from .transport import RequestsTransport, Transport, TransportResponse

LOG = get_logger("valuation-client")


class CallState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TRANSITIONS: Dict[CallState, FrozenSet[CallState]] = {
    CallState.IDLE: frozenset({CallState.SENDING, CallState.FAILED}),
    CallState.SENDING: frozenset({CallState.SUCCEEDED, CallState.FAILED, CallState.RETRYING}),
    CallState.RETRYING: frozenset({CallState.SENDING, CallState.FAILED}),
    CallState.SUCCEEDED: frozenset(),
    CallState.FAILED: frozenset(),
}

TransitionHook = Callable[[CallState, CallState], None]


class ValuationCall:
    """State of one `ValuationClient.valuate` invocation."""

    def __init__(self, on_transition: Optional[TransitionHook] = None) -> None:
        self.state = CallState.IDLE
        self.retry = RetryState()
        self._on_transition = on_transition

    @property
    def finished(self) -> bool:
        return not TRANSITIONS[self.state]

    def advance(self, target: CallState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal valuation state transition {self.state.value} -> {target.value}")
        previous, self.state = self.state, target
        if self._on_transition is not None:
            self._on_transition(previous, target)


class ValuationClient:
    """Turns an image data URL into a ValuationResult through an injected transport.

    Only 5xx answers and network faults are retried, following the backoff
    policy. 4xx answers and malformed model output fail immediately. Pass a
    `threading.Event` as `cancel` to abandon a call; the backoff wait then uses
    the event instead of `sleep` so it returns as soon as the event is set.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        model: str,
        policy: Optional[RetryPolicy] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        sleep: Callable[[float], None] = time.sleep,
        on_transition: Optional[TransitionHook] = None,
    ) -> None:
        self.transport = transport
        self.model = model
        self.policy = policy or RetryPolicy()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._sleep = sleep
        self._on_transition = on_transition

    # ---------- helpers ----------
    def _wait(self, delay: float, cancel: Optional[threading.Event]) -> bool:
        """Wait `delay` seconds; return True when the caller cancelled meanwhile."""
        if cancel is not None:
            return cancel.wait(delay)
        if delay > 0:
            self._sleep(delay)
        return False

    @staticmethod
    def _raise_for_status(response: TransportResponse) -> None:
        if response.status_code >= 500:
            message = upstream_error_message(response.text, response.reason or "Service temporarily unavailable")
            raise UpstreamServerError(response.status_code, message)
        message = upstream_error_message(response.text, response.reason or f"HTTP {response.status_code}")
        raise UpstreamClientError(response.status_code, message)

    def _attempt(self, body: Dict[str, object]) -> ValuationResult:
        try:
            response = self.transport.send(body)
        except OSError as exc:
            raise TransportFault(f"Network error contacting upstream API: {exc}") from exc
        if not response.ok:
            LOG.error("Upstream API error response: HTTP %s %s", response.status_code, response.text[:500])
            self._raise_for_status(response)
        return parse_completion(response.text)

    # ---------- public API ----------
    def valuate(self, image_data_url: str, *, cancel: Optional[threading.Event] = None) -> ValuationResult:
        body = build_request_body(
            image_data_url,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        call = ValuationCall(self._on_transition)
        max_attempts = self.policy.max_attempts

        if cancel is not None and cancel.is_set():
            call.advance(CallState.FAILED)
            raise ValuationCancelled(0)
        call.advance(CallState.SENDING)

        while True:
            call.retry.attempt += 1
            attempt = call.retry.attempt
            LOG.info("Calling upstream API (attempt %d/%d)...", attempt, max_attempts)
            try:
                result = self._attempt(body)
            except ValuationError as exc:
                call.retry.last_error = exc
                if not exc.retryable:
                    call.advance(CallState.FAILED)
                    LOG.error("Valuation failed without retry (%s): %s", exc.kind, exc)
                    raise
                call.advance(CallState.RETRYING)
                decision = next_retry(attempt, self.policy)
                if not decision.retry:
                    call.advance(CallState.FAILED)
                    LOG.error("Giving up after %d attempt(s): %s", attempt, exc)
                    raise RetriesExhausted(attempt, exc) from exc
                LOG.warning(
                    "Attempt %d/%d failed (%s); retrying after %.2fs",
                    attempt,
                    max_attempts,
                    exc,
                    decision.delay,
                )
                if self._wait(decision.delay, cancel):
                    call.advance(CallState.FAILED)
                    LOG.info("Valuation cancelled by caller after %d attempt(s)", attempt)
                    raise ValuationCancelled(attempt) from exc
                call.advance(CallState.SENDING)
                continue
            except Exception:
                call.advance(CallState.FAILED)
                LOG.exception("Unexpected error during valuation attempt %d", attempt)
                raise

            call.advance(CallState.SUCCEEDED)
            LOG.info(
                "Valuation succeeded on attempt %d: %s (%s USD, %d other object(s))",
                attempt,
                result.item_name,
                result.estimated_value,
                len(result.detected_objects),
            )
            return result

    def close(self) -> None:
        """Release the transport's pooled connections, when it holds any."""
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()


class MockValuationClient:
    """Offline stand-in used when no credential is configured."""

    ITEM_NAME = "Sample Item (Mocked)"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def valuate(self, image_data_url: str, *, cancel: Optional[threading.Event] = None) -> ValuationResult:
        if not isinstance(image_data_url, str) or not image_data_url.strip():
            raise EmptyInput()
        if cancel is not None and cancel.is_set():
            raise ValuationCancelled(0)
        return ValuationResult(
            item_name=self.ITEM_NAME,
            estimated_value=float(self._rng.randint(50, 1049)),
            detected_objects=(),
        )

    def close(self) -> None:
        pass


def build_client(
    settings: Settings,
    *,
    transport: Optional[Transport] = None,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """Wire a client from settings.

    Without a transport and without a credential this returns a
    MockValuationClient (when allowed) or raises MissingCredential.
    """
    if transport is None:
        if not settings.has_credential:
            if settings.mock_when_unconfigured:
                LOG.warning("No upstream credential configured; mock valuations will be returned.")
                return MockValuationClient()
            raise MissingCredential()
        transport = RequestsTransport(settings.api_url, settings.api_key, timeout=settings.timeout)

    policy = RetryPolicy(
        max_attempts=max_attempts if max_attempts is not None else settings.max_attempts,
        base_delay=settings.base_delay,
    )
    return ValuationClient(transport, model=settings.model, policy=policy, sleep=sleep)
