"""Image valuation request client: backoff, request building, retrying client."""

from .backoff import RetryDecision, RetryPolicy, delay_for, next_retry
from .client import (
    CallState,
    MockValuationClient,
    ValuationCall,
    ValuationClient,
    build_client,
)
from .errors import (
    EmptyInput,
    MalformedUpstreamResponse,
    MissingCredential,
    RetriesExhausted,
    TransportFault,
    UpstreamClientError,
    UpstreamServerError,
    ValuationCancelled,
    ValuationError,
    offers_manual_retry,
)
from .request import build_request_body, parse_completion, parse_valuation_content
from .transport import RequestsTransport, Transport, TransportResponse

__all__ = [
    "RetryDecision",
    "RetryPolicy",
    "delay_for",
    "next_retry",
    "CallState",
    "MockValuationClient",
    "ValuationCall",
    "ValuationClient",
    "build_client",
    "EmptyInput",
    "MalformedUpstreamResponse",
    "MissingCredential",
    "RetriesExhausted",
    "TransportFault",
    "UpstreamClientError",
    "UpstreamServerError",
    "ValuationCancelled",
    "ValuationError",
    "offers_manual_retry",
    "build_request_body",
    "parse_completion",
    "parse_valuation_content",
    "RequestsTransport",
    "Transport",
    "TransportResponse",
]
