"""Per-school inventory aggregation over rows fetched from the hosted database."""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..logging import get_logger
from .models import ValuationResult

LOG = get_logger("inventory")


@dataclass(frozen=True)
class ScannedItem:
    name: str
    estimated_value: float
    quantity: int = 1
    school_id: Optional[str] = None
    item_id: Optional[str] = None
    image_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("ScannedItem.name must be non-empty")
        if self.estimated_value < 0:
            raise ValueError("ScannedItem.estimated_value must be >= 0")
        if self.quantity < 1:
            raise ValueError("ScannedItem.quantity must be >= 1")

    @property
    def line_value(self) -> float:
        return self.estimated_value * self.quantity

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ScannedItem":
        """Build from an `items` table row (snake_case column names)."""
        quantity = row.get("quantity")
        return cls(
            name=str(row["name"]),
            estimated_value=float(row["estimated_value"]),
            quantity=int(quantity) if quantity is not None else 1,
            school_id=_opt_str(row.get("school_id")),
            item_id=_opt_str(row.get("id")),
            image_url=row.get("image_url"),
        )

    @classmethod
    def from_valuation(
        cls,
        result: ValuationResult,
        *,
        quantity: int = 1,
        school_id: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> "ScannedItem":
        return cls(
            name=result.item_name,
            estimated_value=result.estimated_value,
            quantity=quantity,
            school_id=school_id,
            image_url=image_url,
        )

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "name": self.name,
            "estimated_value": self.estimated_value,
            "quantity": self.quantity,
            "school_id": self.school_id,
        }
        if self.image_url is not None:
            row["image_url"] = self.image_url
        return row


@dataclass(frozen=True)
class SchoolSummary:
    school_id: str
    name: str
    city: Optional[str]
    item_count: int
    total_estimated_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.school_id,
            "name": self.name,
            "city": self.city,
            "item_count": self.item_count,
            "total_estimated_value": self.total_estimated_value,
        }


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def session_total(items: Iterable[ScannedItem]) -> float:
    """Sum of value x quantity over the given items."""
    return sum((item.line_value for item in items), 0.0)


def summarize_school(
    school_id: str,
    name: str,
    items: Iterable[ScannedItem],
    *,
    city: Optional[str] = None,
) -> SchoolSummary:
    materialized = list(items)
    return SchoolSummary(
        school_id=school_id,
        name=name,
        city=city,
        item_count=len(materialized),
        total_estimated_value=session_total(materialized),
    )


def summarize_schools(
    schools: Iterable[Mapping[str, Any]],
    items: Iterable[ScannedItem],
) -> List[SchoolSummary]:
    """Aggregate items per school, preserving the order of `schools`.

    Items whose school is not listed are ignored (and logged at debug level).
    """
    by_school: Dict[str, List[ScannedItem]] = defaultdict(list)
    for item in items:
        if item.school_id is not None:
            by_school[item.school_id].append(item)

    summaries: List[SchoolSummary] = []
    known = set()
    for school in schools:
        sid = str(school["id"])
        known.add(sid)
        summaries.append(
            summarize_school(sid, str(school.get("name") or ""), by_school.get(sid, []), city=school.get("city"))
        )

    orphans = set(by_school) - known
    if orphans:
        LOG.debug("Ignoring items for %d unknown school(s)", len(orphans))
    return summaries


def new_admin_key() -> str:
    return str(uuid.uuid4())


def admin_link(origin: str, admin_key: str) -> str:
    """Scan link handed to on-site staff for one school."""
    if not admin_key or not admin_key.strip():
        raise ValueError("admin_key must be non-empty")
    return f"{origin.rstrip('/')}/admin/{admin_key.strip()}"
