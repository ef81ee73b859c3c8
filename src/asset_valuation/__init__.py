"""
School asset valuation toolkit.

Turns captured asset photos into structured valuations via a hosted
multimodal model, with retrying client, a credential-holding relay and
per-school inventory aggregation.
"""

__all__ = [
    "config",
    "logging",
    "domain",
    "valuation",
    "relay",
]
