"""Shared timestamp normalization helpers.

Every timestamp in the session model is an integer count of milliseconds since
the Unix epoch (UTC). Source logs mix ISO-8601 strings and numeric epochs.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y/%m/%d", "%Y-%m-%d %H:%M:%S"):
        try:
            parsed = datetime.strptime(cleaned.replace("Z", "+0000"), fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def iso_to_epoch_ms(value: Any) -> int:
    """Convert an ISO-8601 string into epoch milliseconds, 0 when unreadable."""
    if not isinstance(value, str):
        return 0
    token = value.strip()
    if not token:
        return 0
    if _DATE_ONLY_RE.match(token):
        token = f"{token}T00:00:00"
    parsed = _parse_datetime_token(token)
    if parsed is None:
        return 0
    dt = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    try:
        return int(round(dt.astimezone(timezone.utc).timestamp() * 1000))
    except (OverflowError, ValueError):
        # Offsets that push a date past year 1 or 9999.
        return 0


def coerce_epoch_ms(value: Any) -> int:
    """Accept epoch milliseconds (int/float/numeric str) or ISO strings."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value)) if math.isfinite(value) else 0
    if isinstance(value, str):
        token = value.strip()
        if token.isascii() and token.isdigit():
            return int(token)
        return iso_to_epoch_ms(token)
    return 0
