"""
Incident Atlas - Timestamp Parsing

Upstream feeds publish "floating" timestamps (no zone) such as
2023-01-15T00:00:00.000, plus the occasional MM/DD/YYYY date. Everything is
normalized to naive datetimes in city-local time.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import pandas as pd

_FALLBACK_FORMATS = ("%m/%d/%Y", "%m/%d/%Y %H:%M:%S", "%Y/%m/%d")


def as_datetime(value: date | datetime) -> datetime:
    """Promote a date to midnight and drop any timezone."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime(value.year, value.month, value.day)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an upstream timestamp value.

    Args:
        value: datetime, date, ISO string, MM/DD/YYYY string or None

    Returns:
        Naive datetime, or None when the value cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return as_datetime(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime().replace(tzinfo=None)


def to_floating_timestamp(value: date | datetime) -> str:
    """Format as a SoQL floating timestamp: YYYY-MM-DDTHH:MM:SS.mmm"""
    dt = as_datetime(value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}"
