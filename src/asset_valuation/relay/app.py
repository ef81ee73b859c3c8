from __future__ import annotations

import asyncio
import dataclasses
import threading
from typing import Any, Dict, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..config import Settings, load_settings
from ..logging import get_logger
from ..valuation.client import ValuationClient, build_client
from ..valuation.errors import InvalidRelayRequest, MissingCredential, ValuationError
from ..valuation.transport import Transport


LOG = get_logger("relay")

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

# Seconds between checks for a dropped caller while a valuation is running.
DISCONNECT_POLL_INTERVAL = 0.5


def _error(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=CORS_HEADERS)


async def cancel_on_disconnect(request: Request, cancel: threading.Event, interval: float = DISCONNECT_POLL_INTERVAL) -> None:
    """Set `cancel` once the caller of `request` has gone away."""
    while not cancel.is_set():
        if await request.is_disconnected():
            LOG.info("Caller disconnected; cancelling pending valuation")
            cancel.set()
            return
        await asyncio.sleep(interval)


def _image_from_payload(payload: Any) -> str:
    image = payload.get("imageDataUrl") if isinstance(payload, dict) else None
    if not isinstance(image, str) or not image.strip():
        raise InvalidRelayRequest("Missing imageDataUrl in request body")
    return image


def create_app(settings: Optional[Settings] = None, *, transport: Optional[Transport] = None) -> Starlette:
    """Create the stateless relay that forwards valuation requests upstream.

    The upstream credential lives in `settings` (server side). A transport can
    be injected for tests or alternative upstreams. Every failure becomes a
    500 with `{"error": message}`.
    """
    settings = settings or load_settings()
    # The relay never falls back to mock data.
    relay_settings = dataclasses.replace(settings, mock_when_unconfigured=False)

    client: Optional[ValuationClient] = None
    if transport is not None or relay_settings.has_credential:
        client = build_client(relay_settings, transport=transport, max_attempts=relay_settings.relay_max_attempts)
        LOG.info("Relay ready (model=%s, attempts=%d)", relay_settings.model, relay_settings.relay_max_attempts)
    else:
        LOG.error("GROQ_API_KEY or VITE_GROQ_API_KEY environment variable is not set; relay will answer 500")

    async def preflight(_: Request) -> Response:
        return Response(status_code=200, headers=CORS_HEADERS)

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "credential": client is not None}, headers=CORS_HEADERS)

    async def infer(request: Request) -> JSONResponse:
        try:
            if client is None:
                raise MissingCredential()
            try:
                payload = await request.json()
            except ValueError as exc:
                raise InvalidRelayRequest("Invalid JSON in request body") from exc
            image = _image_from_payload(payload)
            LOG.info("Image data URL received, length: %d", len(image))
            cancel = threading.Event()
            watcher = asyncio.ensure_future(cancel_on_disconnect(request, cancel))
            try:
                result = await run_in_threadpool(client.valuate, image, cancel=cancel)
            finally:
                watcher.cancel()
        except ValuationError as exc:
            LOG.error("Relay request failed (%s): %s", exc.kind, exc)
            return _error(str(exc))
        except Exception:
            LOG.exception("Unexpected error in relay")
            return _error("Internal server error")
        return JSONResponse(result.to_dict(), headers=CORS_HEADERS)

    routes = [
        Route("/", infer, methods=["POST"]),
        Route("/health", health, methods=["GET"]),
        Route("/{path:path}", preflight, methods=["OPTIONS"]),
    ]
    return Starlette(debug=False, routes=routes)


__all__ = ["CORS_HEADERS", "cancel_on_disconnect", "create_app"]
