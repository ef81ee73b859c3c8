from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


def _check_value(label: str, value: float) -> None:
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{label} must be a finite number >= 0, got {value!r}")


@dataclass(frozen=True)
class DetectedObject:
    """A secondary item found in the same image as the primary item."""

    name: str
    estimated_value: float
    confidence: float

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("DetectedObject.name must be non-empty")
        _check_value("DetectedObject.estimated_value", self.estimated_value)
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"DetectedObject.confidence must be within [0, 1], got {self.confidence!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "estimatedValue": self.estimated_value,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ValuationResult:
    """Primary item name and USD value plus any auxiliary detections."""

    item_name: str
    estimated_value: float
    detected_objects: Tuple[DetectedObject, ...] = ()

    def __post_init__(self) -> None:
        if not self.item_name or not self.item_name.strip():
            raise ValueError("ValuationResult.item_name must be non-empty")
        _check_value("ValuationResult.estimated_value", self.estimated_value)
        # Accept any sequence from callers but store an immutable tuple.
        object.__setattr__(self, "detected_objects", tuple(self.detected_objects))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemName": self.item_name,
            "estimatedValue": self.estimated_value,
            "detectedObjects": [o.to_dict() for o in self.detected_objects],
        }

    def candidates(self) -> List[DetectedObject]:
        """Primary item (confidence 1.0) followed by the secondary detections.

        This is the list an operator picks from before saving an asset.
        """
        primary = DetectedObject(self.item_name, self.estimated_value, 1.0)
        return [primary, *self.detected_objects]


@dataclass
class RetryState:
    """Per-call bookkeeping for the valuation retry loop."""

    attempt: int = 0
    last_error: Optional[Exception] = None
