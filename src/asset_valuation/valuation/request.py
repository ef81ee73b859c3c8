"""Build chat-completion requests for asset valuation and validate the answers."""

from __future__ import annotations

import base64
import json
import math
import mimetypes
import os
from typing import Any, Dict, List, Optional, Union

from ..domain.models import DetectedObject, ValuationResult
from ..logging import get_logger
from .errors import EmptyInput, MalformedUpstreamResponse

LOG = get_logger("valuation-request")


SYSTEM_PROMPT = (
    "You are an expert in identifying and valuing school assets. "
    "When shown an image, identify the main item and estimate its value based on current market prices. "
    "Also detect any other relevant items in the image. "
    "Format your response as a JSON object with the following structure:\n"
    "{\n"
    '  "mainItem": {\n'
    '    "name": "item name",\n'
    '    "estimatedValue": numeric value in USD\n'
    "  },\n"
    '  "otherObjects": [\n'
    "    {\n"
    '      "name": "object name",\n'
    '      "estimatedValue": numeric value in USD,\n'
    '      "confidence": confidence score between 0 and 1\n'
    "    }\n"
    "  ]\n"
    "}"
)

USER_PROMPT = (
    "Please identify and value the main item in this image, "
    "along with any other relevant items you can detect."
)

DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 500


def build_request_body(
    image_data_url: str,
    *,
    model: str,
    temperature: float = DEFAULT_TEMPERATURE,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> Dict[str, Any]:
    """Return the JSON body for one valuation request.

    Raises EmptyInput for a missing or blank payload. Image content and MIME
    type are not inspected.
    """
    if not isinstance(image_data_url, str) or not image_data_url.strip():
        raise EmptyInput()
    return {
        "model": model,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_data_url}},
                ],
            },
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }


def data_url_from_file(path: str) -> Optional[str]:
    """Encode an image file as a data URL, or None when it cannot be used."""
    mime, _ = mimetypes.guess_type(path)
    if not mime:
        ext = os.path.splitext(path)[1].lower()
        mime = "image/jpeg" if ext in {".jpg", ".jpeg", ".jpe", ".jfif"} else "image/png"
    if not mime.startswith("image/"):
        LOG.error("Unsupported MIME type for valuation: %s", mime)
        return None
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        LOG.error("Failed to read image for data URL: %s", e)
        return None
    if not data:
        LOG.error("Image file is empty: %s", path)
        return None
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def _number(value: Any, label: str) -> float:
    # bool is an int subclass; a JSON true is not a price.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedUpstreamResponse(f"{label} must be a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number) or number < 0:
        raise MalformedUpstreamResponse(f"{label} must be a finite number >= 0, got {value!r}")
    return number


def _name(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedUpstreamResponse(f"{label} must be a non-empty string")
    return value.strip()


def _detected_object(raw: Any, idx: int) -> DetectedObject:
    if not isinstance(raw, dict):
        raise MalformedUpstreamResponse(f"otherObjects[{idx}] must be an object")
    name = _name(raw.get("name"), f"otherObjects[{idx}].name")
    value = _number(raw.get("estimatedValue"), f"otherObjects[{idx}].estimatedValue")
    confidence_raw = raw.get("confidence")
    confidence = 0.0 if confidence_raw is None else _number(confidence_raw, f"otherObjects[{idx}].confidence")
    if confidence > 1.0:
        raise MalformedUpstreamResponse(f"otherObjects[{idx}].confidence must be within [0, 1]")
    return DetectedObject(name=name, estimated_value=value, confidence=confidence)


def parse_valuation_content(content: Union[str, Dict[str, Any]]) -> ValuationResult:
    """Validate the model's JSON answer and turn it into a ValuationResult."""
    if isinstance(content, str):
        try:
            payload = json.loads(content)
        except ValueError as exc:
            LOG.error("Failed to parse model response: %s", exc)
            LOG.debug("Raw content: %r", content[:500])
            raise MalformedUpstreamResponse("Invalid response format from model") from exc
    else:
        payload = content

    if not isinstance(payload, dict):
        raise MalformedUpstreamResponse("Model response must be a JSON object")

    main = payload.get("mainItem")
    if not isinstance(main, dict):
        raise MalformedUpstreamResponse("mainItem must be an object")
    item_name = _name(main.get("name"), "mainItem.name")
    estimated_value = _number(main.get("estimatedValue"), "mainItem.estimatedValue")

    others = payload.get("otherObjects")
    if others is None:
        others = []
    if not isinstance(others, list):
        raise MalformedUpstreamResponse("otherObjects must be a list")
    detected: List[DetectedObject] = [_detected_object(o, i) for i, o in enumerate(others)]

    LOG.debug("Parsed valuation: %s (%s USD) with %d other object(s)", item_name, estimated_value, len(detected))
    return ValuationResult(item_name=item_name, estimated_value=estimated_value, detected_objects=tuple(detected))


def parse_completion(body: Union[str, Dict[str, Any]]) -> ValuationResult:
    """Extract `choices[0].message.content` from a chat-completion envelope and parse it."""
    if isinstance(body, str):
        try:
            envelope = json.loads(body)
        except ValueError as exc:
            raise MalformedUpstreamResponse("Upstream response is not valid JSON") from exc
    else:
        envelope = body

    if not isinstance(envelope, dict):
        raise MalformedUpstreamResponse("Upstream response must be a JSON object")
    choices = envelope.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise MalformedUpstreamResponse("Upstream response has no choices")
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise MalformedUpstreamResponse("Upstream response has no message content")
    return parse_valuation_content(content)


def upstream_error_message(text: Optional[str], fallback: str) -> str:
    """Pull `error.message` out of an error body, else the raw text or fallback."""
    if text:
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and isinstance(err.get("message"), str) and err["message"]:
                return err["message"]
            if isinstance(err, str) and err:
                return err
        stripped = text.strip()
        if stripped and data is None:
            return stripped[:500]
    return fallback
