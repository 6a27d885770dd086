"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
from typing import Any, Optional


def parse_calendar_date(value: str | None) -> Optional[dt.date]:
    """Parse a recognised receipt date into a :class:`date`.

    The recognizer is asked for ``YYYY-MM-DD`` but sometimes returns a full
    ISO8601 timestamp (occasionally with a lowercase ``z`` UTC designator,
    which ``datetime.fromisoformat`` rejects on older interpreters).  Any
    time component is dropped.  Returns ``None`` if the value cannot be
    parsed.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        pass
    try:
        if value.endswith(("z", "Z")):
            value = value[:-1] + "+00:00"
        return dt.datetime.fromisoformat(value).date()
    except ValueError:
        return None


def coerce_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or ``None`` when it is not numeric.

    Strings such as ``"12.50"`` or ``"$1,299.00"`` are accepted.  Booleans
    are rejected even though they are ints in Python.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().lstrip("$€£¥").replace(",", "")
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def coerce_text(value: Any) -> Optional[str]:
    """Return a stripped non-empty string, or ``None``."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None
