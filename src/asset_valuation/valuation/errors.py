"""Error taxonomy for the valuation client and relay."""

from __future__ import annotations

from typing import Optional


class ValuationError(Exception):
    """Base class. `kind` is a stable identifier, `retryable` marks transient failures."""

    kind = "valuation_error"
    retryable = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class EmptyInput(ValuationError):
    kind = "empty_input"

    def __init__(self, message: str = "No image payload supplied") -> None:
        super().__init__(message)


class MissingCredential(ValuationError):
    kind = "missing_credential"

    def __init__(self, message: str = "GROQ_API_KEY or VITE_GROQ_API_KEY environment variable is not set") -> None:
        super().__init__(message)


class InvalidRelayRequest(ValuationError):
    kind = "invalid_request"


class MalformedUpstreamResponse(ValuationError):
    kind = "malformed_response"


class UpstreamClientError(ValuationError):
    """Non-retryable 4xx answer from the inference API."""

    kind = "upstream_client_error"

    def __init__(self, status_code: int, upstream_message: str) -> None:
        self.status_code = status_code
        self.upstream_message = upstream_message
        super().__init__(f"Upstream API error ({status_code}): {upstream_message}")


class UpstreamServerError(ValuationError):
    kind = "upstream_server_error"
    retryable = True

    def __init__(self, status_code: int, upstream_message: str) -> None:
        self.status_code = status_code
        self.upstream_message = upstream_message
        super().__init__(f"Upstream API server error ({status_code}): {upstream_message}")


class TransportFault(ValuationError):
    """Network-level failure: connection refused, timeout, reset."""

    kind = "transport_fault"
    retryable = True


class RetriesExhausted(ValuationError):
    kind = "retries_exhausted"

    def __init__(self, attempts: int, last_error: Optional[Exception]) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Failed to reach upstream API after {attempts} attempts. Last error: {detail}")


class ValuationCancelled(ValuationError):
    kind = "cancelled"

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Valuation cancelled after {attempts} attempt(s)")


def offers_manual_retry(error: BaseException) -> bool:
    """Whether re-triggering the capture could plausibly succeed."""
    if isinstance(error, ValuationError):
        return error.retryable or isinstance(error, (RetriesExhausted, ValuationCancelled))
    return False
