"""
Timezone utilities for the ledger sync engine.

Conventions:
- Internal storage/processing: UTC (timezone-aware)
- BMP statement timestamps: naive America/Sao_Paulo local time
- Bitso timestamps: ISO-8601, usually with offset; naive values assumed America/Sao_Paulo
- UI display: America/Sao_Paulo

All datetime objects in the system should be timezone-aware UTC for consistency.
"""

from __future__ import annotations
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from zoneinfo import ZoneInfo


# Standard timezones
UTC = timezone.utc
SAO_PAULO = ZoneInfo("America/Sao_Paulo")

# Formats seen in BMP statements, tried in order
_LOCAL_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d",
    "%d/%m/%Y",
)


def now_utc() -> datetime:
    """Get current time in UTC (timezone-aware)."""
    return datetime.now(UTC)


def to_utc(dt: datetime, assume_tz: Optional[ZoneInfo] = None) -> datetime:
    """
    Convert a datetime to UTC.

    Args:
        dt: The datetime to convert.
        assume_tz: If dt is naive, assume it's in this timezone.
                   Defaults to UTC if None.

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt is None:
        return now_utc()

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=assume_tz or UTC)

    return dt.astimezone(UTC)


def parse_timestamp(
    value: Any,
    source_tz: Optional[ZoneInfo] = None,
) -> Optional[datetime]:
    """
    Parse a provider timestamp and convert to UTC.

    Accepts ISO-8601 strings (with or without offset, trailing "Z"),
    the BMP local formats, epoch seconds/milliseconds and datetime objects.

    Args:
        value: Raw timestamp.
        source_tz: Timezone of naive values. Defaults to UTC if None.

    Returns:
        Timezone-aware datetime in UTC, or None if parsing fails.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return to_utc(value, source_tz)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, UTC)
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if not text:
        return None

    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return to_utc(datetime.fromisoformat(iso_text), source_tz)
    except ValueError:
        pass

    for fmt in _LOCAL_FORMATS:
        try:
            return to_utc(datetime.strptime(text, fmt), source_tz)
        except ValueError:
            continue

    return None


def start_of_day_utc(day: date, tz: ZoneInfo = SAO_PAULO) -> datetime:
    """00:00:00 of `day` in `tz`, as UTC."""
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)


def end_of_day_utc(day: date, tz: ZoneInfo = SAO_PAULO) -> datetime:
    """23:59:59.999999 of `day` in `tz`, as UTC."""
    return datetime.combine(day, time.max, tzinfo=tz).astimezone(UTC)


def format_local(dt: datetime, fmt: str = "%d/%m/%Y %H:%M:%S") -> str:
    """
    Format a datetime for display in America/Sao_Paulo.

    Args:
        dt: The datetime to format (should be timezone-aware UTC).
        fmt: The format string.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(SAO_PAULO).strftime(fmt)
