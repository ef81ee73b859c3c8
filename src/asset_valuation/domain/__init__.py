from .models import DetectedObject, RetryState, ValuationResult
from .inventory import (
    ScannedItem,
    SchoolSummary,
    admin_link,
    new_admin_key,
    session_total,
    summarize_school,
    summarize_schools,
)

__all__ = [
    "DetectedObject",
    "RetryState",
    "ValuationResult",
    "ScannedItem",
    "SchoolSummary",
    "admin_link",
    "new_admin_key",
    "session_total",
    "summarize_school",
    "summarize_schools",
]
