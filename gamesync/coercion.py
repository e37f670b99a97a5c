"""Helpers for reading loosely-shaped remote payloads.

Different endpoint versions spell the same field differently (``maxHp`` vs
``max_hp``, ``characterId`` vs ``character_id``) and occasionally send numbers
as strings.  The parsers look fields up through an ordered alias list and
coerce the result to the expected scalar type; anything unusable comes back
as ``None`` so the caller can apply its documented default.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
_NON_NUMERIC_RE = re.compile(r"[^0-9.]")

_MISSING = object()


def pick(data: Any, *aliases: str, default: Any = None) -> Any:
    """Return the first alias whose value is present and not blank."""

    if not isinstance(data, Mapping):
        return default
    for alias in aliases:
        value = data.get(alias, _MISSING)
        if value is _MISSING or value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return default


def coerce_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # NaN and +/-inf, e.g. json.loads("1e400")
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if _NUMBER_RE.match(text):
            try:
                return int(float(text))
            except (ValueError, OverflowError):
                return None
    return None


def coerce_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_price(value: Any) -> Optional[float]:
    """Parse ``"15 gp"`` style values down to their numeric part."""

    number = coerce_float(value)
    if number is not None or not isinstance(value, str):
        return number
    digits = _NON_NUMERIC_RE.sub("", value)
    return coerce_float(digits) if digits else None


def coerce_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (Mapping, list, tuple, set)):
        return None
    return str(value)


def coerce_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
    return None


def coerce_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, Iterable) and not isinstance(value, (bytes, Mapping)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return []


def coerce_mapping(value: Any) -> dict:
    return dict(value) if isinstance(value, Mapping) else {}


def int_field(data: Any, *aliases: str, default: int) -> int:
    result = coerce_int(pick(data, *aliases))
    return default if result is None else result


def str_field(data: Any, *aliases: str, default: Optional[str] = None) -> Optional[str]:
    result = coerce_str(pick(data, *aliases))
    return default if result is None else result
