"""Utility helpers for ETL layer."""

import math
import time
from datetime import datetime, timezone
from typing import Any, Optional


def now_ms() -> int:
    """Current time as epoch milliseconds (the timestamp unit stored on records)."""
    return int(time.time() * 1000)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (``2.5`` -> ``3``)."""
    return int(math.floor(value + 0.5))


def to_number(value: Any, default: float = 0) -> float:
    """Coerce *value* to a finite, non-negative number.

    Strings are parsed, booleans and anything unparsable fall back to *default*.
    Integers are returned unchanged so whole-number inputs keep their type.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return max(value, 0)
    try:
        num = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(num) or math.isinf(num):
        return default
    return max(num, 0.0)


def to_int(value: Any, default: int = 0) -> int:
    """Coerce *value* to a non-negative integer, rounding halves up."""
    num = to_number(value, default)
    if isinstance(num, int):
        return num
    return round_half_up(num)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Returns ``None`` for anything that is not a parsable string.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = ["now_ms", "round_half_up", "to_number", "to_int", "parse_timestamp"]
