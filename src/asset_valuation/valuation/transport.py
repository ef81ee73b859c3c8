"""HTTP transports for the valuation client.

The client only depends on the `Transport` protocol; `RequestsTransport` is
the production implementation talking to the hosted inference API.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests

from ..logging import get_logger
from .errors import TransportFault

LOG = get_logger("valuation-transport")


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    text: str
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(Protocol):
    def send(self, body: Dict[str, Any]) -> TransportResponse:
        """POST `body` upstream; raise TransportFault on network-level failure."""
        ...


class RequestsTransport:
    """Bearer-authenticated JSON POSTs over a pooled requests.Session."""

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = float(timeout)
        self.s = session or requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def send(self, body: Dict[str, Any]) -> TransportResponse:
        try:
            r = self.s.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            LOG.warning("POST %s failed: %s", self.url, exc)
            raise TransportFault(f"Network error contacting upstream API: {exc}") from exc
        LOG.debug("POST %s -> HTTP %s", self.url, r.status_code)
        return TransportResponse(status_code=r.status_code, text=r.text, reason=r.reason or "")

    def close(self) -> None:
        self.s.close()
