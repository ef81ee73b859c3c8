"""Runtime settings read from the environment and the nearest `.env` file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from .logging import get_logger, preview_secret

log = get_logger("config")

DEFAULT_API_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_MODEL = "meta-llama/llama-4-maverick-17b-128e-instruct"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    max_attempts: int = 3
    base_delay: float = 1.0
    timeout: float = 60.0
    mock_when_unconfigured: bool = True
    relay_max_attempts: int = 1

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return the first matching file found when walking up from start_dir."""
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug("No .env found starting from: %s", os.path.abspath(dotenv_dir))
        return {}
    values = {k: v for k, v in dotenv_values(path).items() if v is not None}
    log.debug("Loaded %d key(s) from .env at %s", len(values), path)
    return values


def _lookup(name: str, environ: Mapping[str, str], dotenv: Mapping[str, str]) -> Optional[str]:
    v = environ.get(name)
    if v is None or not v.strip():
        v = dotenv.get(name)
    if v is None:
        return None
    v = v.strip()
    return v or None


def _as_int(name: str, raw: Optional[str], default: int, *, minimum: int = 1) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default
    if value < minimum:
        log.warning("%s=%s is below %s; using %s", name, value, minimum, default)
        return default
    return value


def _as_float(name: str, raw: Optional[str], default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("%s=%r is not a number; using %s", name, raw, default)
        return default
    if value < 0:
        log.warning("%s=%s is negative; using %s", name, value, default)
        return default
    return value


def _as_bool(name: str, raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    log.warning("%s=%r is not a boolean; using %s", name, raw, default)
    return default


def load_settings(dotenv_dir: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the process environment, then `.env`.

    Environment variables win over `.env` entries. The credential is read from
    GROQ_API_KEY and falls back to VITE_GROQ_API_KEY.
    """
    env = os.environ if environ is None else environ
    dotenv = _read_dotenv(dotenv_dir or os.getcwd())

    api_key = _lookup("GROQ_API_KEY", env, dotenv) or _lookup("VITE_GROQ_API_KEY", env, dotenv)
    if api_key:
        log.debug("Upstream credential found: %s", preview_secret(api_key))
    else:
        log.info("No upstream credential configured (GROQ_API_KEY / VITE_GROQ_API_KEY)")

    return Settings(
        api_key=api_key,
        api_url=_lookup("GROQ_API_URL", env, dotenv) or DEFAULT_API_URL,
        model=_lookup("GROQ_MODEL", env, dotenv) or DEFAULT_MODEL,
        max_attempts=_as_int("VALUATION_MAX_ATTEMPTS", _lookup("VALUATION_MAX_ATTEMPTS", env, dotenv), 3),
        base_delay=_as_float("VALUATION_BASE_DELAY", _lookup("VALUATION_BASE_DELAY", env, dotenv), 1.0),
        timeout=_as_float("VALUATION_TIMEOUT", _lookup("VALUATION_TIMEOUT", env, dotenv), 60.0),
        mock_when_unconfigured=_as_bool(
            "VALUATION_MOCK_WHEN_UNCONFIGURED",
            _lookup("VALUATION_MOCK_WHEN_UNCONFIGURED", env, dotenv),
            True,
        ),
        relay_max_attempts=_as_int("RELAY_MAX_ATTEMPTS", _lookup("RELAY_MAX_ATTEMPTS", env, dotenv), 1),
    )


def describe_credential(settings: Settings) -> Dict[str, object]:
    """Diagnostics about the configured credential that never expose the key."""
    key = settings.api_key or ""
    return {
        "hasApiKey": bool(key),
        "apiKeyLength": len(key),
        "isValidFormat": key.startswith("gsk_"),
        "preview": preview_secret(key),
    }
