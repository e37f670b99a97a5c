"""Response normalization for remote tool results.

Tool results arrive in one of two shapes:

1. a content envelope: ``{"content": [{"type": "text", "text": "..."}]}``
2. an already-structured payload: ``{"characters": [...], "count": 1}``

All "which shape is this" branching lives here so call sites only ever deal
with the normalized value.  None of these helpers raise: a malformed result
degrades to the caller-supplied fallback so one bad field cannot abort an
otherwise successful sync.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_JSON_RE = re.compile(r"<!-- STATE_JSON\n([\s\S]*?)\nSTATE_JSON -->")
_PRIMITIVES = (str, int, float, bool)


def _first_text_item(content: Any) -> Optional[str]:
    if not isinstance(content, list):
        return None
    for item in content:
        if isinstance(item, Mapping) and item.get("type") == "text":
            text = item.get("text")
            return text if isinstance(text, str) and text else None
    return None


def normalize(raw: Any, fallback: T) -> T:
    """Extract the payload from a tool result, or return ``fallback``."""

    if raw is None:
        return fallback

    if isinstance(raw, Mapping):
        if "content" not in raw:
            return raw  # type: ignore[return-value]

        text = _first_text_item(raw.get("content"))
        if text is None:
            logger.debug("Content envelope without usable text item; using fallback")
            return fallback
        try:
            return json.loads(text)
        except (json.JSONDecodeError, ValueError):
            # Non-JSON simple results, e.g. a formatted dice roll
            return text  # type: ignore[return-value]

    if isinstance(raw, list):
        return raw  # type: ignore[return-value]

    if isinstance(raw, _PRIMITIVES):
        return raw  # type: ignore[return-value]

    logger.debug("Unrecognized tool result of type %s; using fallback", type(raw).__name__)
    return fallback


def _embedded_payload(raw: Any) -> Optional[Mapping]:
    """Return the mapping that may carry an ``error`` field, from either shape."""

    if not isinstance(raw, Mapping):
        return None
    if raw.get("error"):
        return raw
    text = _first_text_item(raw.get("content"))
    if text is None:
        return None
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, Mapping) else None


def _error_to_message(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return "Unknown error"


def is_error_response(raw: Any) -> bool:
    """True when the result carries an embedded ``error`` field."""

    payload = _embedded_payload(raw)
    return bool(payload and payload.get("error"))


def get_error_message(raw: Any) -> Optional[str]:
    """Display string for an embedded error, or ``None`` when there is none."""

    payload = _embedded_payload(raw)
    if not payload or not payload.get("error"):
        return None
    return _error_to_message(payload["error"])


def extract_embedded_state_json(text: Any) -> Optional[Any]:
    """Pull the JSON block out of ``<!-- STATE_JSON ... STATE_JSON -->`` markers."""

    if not isinstance(text, str):
        return None
    match = _STATE_JSON_RE.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("Failed to parse embedded state JSON: %s", exc)
        return None


__all__ = [
    "normalize",
    "is_error_response",
    "get_error_message",
    "extract_embedded_state_json",
]
