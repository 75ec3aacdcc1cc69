"""
Timing Normalization
====================

Speech backends report word offsets in several encodings depending on the
API version and client layer:

1. Bare numbers (already milliseconds)
2. Duration strings such as ``"1.500s"`` (the JSON form of a protobuf Duration)
3. ``{"seconds": "3", "nanos": 500000000}`` mappings or objects with the same
   attributes (the raw protobuf form)
4. ``datetime.timedelta`` (what proto-plus hands back for Duration fields)

Everything that touches backend timestamps goes through ``to_millis`` so the
variability is confined to this one function.
"""

import math
from datetime import timedelta
from typing import Any


def _to_float(value: Any) -> float:
    """Parse a number or numeric string; malformed input becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


def _truncate(value: float) -> int:
    # Finite inputs can still overflow once scaled to milliseconds
    if math.isnan(value) or math.isinf(value):
        return 0
    # "2.3s" * 1000 is 2299.9999999999995 in binary floating point
    return int(round(value, 6))


def to_millis(value: Any) -> int:
    """
    Convert any duration-like value into integer milliseconds.

    Total function: unknown, absent or malformed input yields 0 and it never
    raises. Results are truncated toward zero.

    Examples:
        >>> to_millis({"seconds": "3", "nanos": 500000000})
        3500
        >>> to_millis("2.5s")
        2500
        >>> to_millis(None)
        0
    """
    if value is None or isinstance(value, bool):
        return 0

    if isinstance(value, (int, float)):
        return _truncate(_to_float(value))

    if isinstance(value, timedelta):
        return _truncate(value.total_seconds() * 1000)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("s"):
            return _truncate(_to_float(text[:-1]) * 1000)
        return _truncate(_to_float(text))

    if isinstance(value, dict):
        seconds = value.get("seconds")
        nanos = value.get("nanos")
    elif hasattr(value, "seconds") or hasattr(value, "nanos"):
        seconds = getattr(value, "seconds", None)
        nanos = getattr(value, "nanos", None)
    else:
        return 0

    return _truncate(_to_float(seconds) * 1000 + _to_float(nanos) / 1e6)
