import logging
import os
import re
from typing import Optional, Union


_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_BEARER = re.compile(r"(Bearer\s+)[^\s'\"]+")
_GROQ_KEY = re.compile(r"\bgsk_[A-Za-z0-9]+")
# Photos travel as base64 data URLs; keep the header, drop the payload.
_DATA_URL = re.compile(r"(data:[\w/+.-]+;base64,)[A-Za-z0-9+/=]{32,}")


def _coerce_level(value: Optional[Union[str, int]]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def redact(text: str) -> str:
    """Mask upstream credentials and shorten inline image payloads."""
    text = _BEARER.sub(r"\1***", text)
    text = _GROQ_KEY.sub("gsk_***", text)
    return _DATA_URL.sub(r"\1...", text)


class RedactingFilter(logging.Filter):
    """Rewrites each record's message through `redact` before it is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg, record.args = cleaned, None
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a stdout logger namespaced under `asset_valuation`.

    LOG_LEVEL (default INFO) and LOG_FILE (appended) are read on first use.
    Records pass through `RedactingFilter`, so API keys and image bytes that
    end up in upstream error text never reach the log.
    """
    logger = logging.getLogger(f"asset_valuation.{name}")
    if getattr(logger, "_asset_valuation_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)
    logger.addFilter(RedactingFilter())
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
        except OSError:
            logger.warning("LOG_FILE %s could not be opened; continuing without file logging", log_file)
        else:
            fh.setLevel(level)
            fh.setFormatter(formatter)
            logger.addHandler(fh)

    logger.propagate = False
    setattr(logger, "_asset_valuation_configured", True)
    return logger


def preview_secret(value: Optional[str], keep: int = 10) -> str:
    """Return a log-safe preview of a credential (first characters only)."""
    if not value:
        return "undefined"
    return f"{value[:keep]}..."
