from __future__ import annotations

import json
import os
import sys
from typing import Any, Dict, List, Sequence, Union

import pytest

# Ensure the repository's src/ is importable when tests run from a checkout
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from asset_valuation.valuation.transport import TransportResponse  # noqa: E402


Step = Union[TransportResponse, Exception]


def completion(content: Any, status_code: int = 200) -> TransportResponse:
    """Wrap model output in a chat-completion envelope."""
    text = content if isinstance(content, str) else json.dumps(content)
    body = {"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]}
    return TransportResponse(status_code=status_code, text=json.dumps(body), reason="OK")


def error_response(status_code: int, message: str = "", reason: str = "") -> TransportResponse:
    text = json.dumps({"error": {"message": message}}) if message else ""
    return TransportResponse(status_code=status_code, text=text, reason=reason)


class ScriptedTransport:
    """Replays a fixed sequence of responses/exceptions; repeats the last step."""

    def __init__(self, steps: Sequence[Step]) -> None:
        self.steps: List[Step] = list(steps)
        self.bodies: List[Dict[str, Any]] = []

    @property
    def calls(self) -> int:
        return len(self.bodies)

    def send(self, body: Dict[str, Any]) -> TransportResponse:
        self.bodies.append(body)
        step = self.steps[min(len(self.bodies), len(self.steps)) - 1]
        if isinstance(step, Exception):
            raise step
        return step


PROJECTOR = {
    "mainItem": {"name": "Projector", "estimatedValue": 450},
    "otherObjects": [{"name": "Cart", "estimatedValue": 80, "confidence": 0.7}],
}


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def record_sleep(sleeps: List[float]):
    return sleeps.append
