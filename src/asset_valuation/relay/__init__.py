"""Credential-holding relay in front of the hosted inference API."""

from .app import CORS_HEADERS, create_app

__all__ = ["CORS_HEADERS", "create_app"]
