"""Shared decoding helpers for vendor payloads."""

from datetime import datetime
from typing import Any, Optional

import pandas as pd


def parse_optional_float(value: object) -> float | None:
    """Coerce a payload value to float if possible, otherwise return None.

    The data API sends most prices as JSON numbers but some feeds send
    them as strings, so both are accepted.
    """
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_float(value: object, field: str = "value") -> float:
    """Coerce a required numeric field to float.

    Raises:
        ValueError: If the value is missing or not a number
    """
    parsed = parse_optional_float(value)
    if parsed is None:
        raise ValueError(f"expected a number for {field!r}, got {value!r}")
    return parsed


def parse_optional_int(value: object) -> int | None:
    """Coerce a payload value to int if possible, otherwise return None."""
    parsed = parse_optional_float(value)
    if parsed is None:
        return None
    return int(parsed)


def parse_timestamp(value: Any) -> pd.Timestamp:
    """Parse an RFC-3339 timestamp into a UTC pandas Timestamp.

    pandas keeps the nanosecond precision the data API sends, which a
    plain datetime would truncate to microseconds.

    Raises:
        ValueError: If the value is missing or not a timestamp
    """
    if value is None or value == "":
        raise ValueError("timestamp is required")
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError(f"invalid timestamp: {value!r}")
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def as_list(value: Optional[Any]) -> list:
    """Return the value as a list, treating null as empty."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def to_utc(value: datetime) -> pd.Timestamp:
    """Convert a datetime to a UTC Timestamp; naive values are taken as UTC."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def to_rfc3339(value: datetime) -> str:
    """Format a datetime for the `start`/`end` query parameters."""
    return to_utc(value).isoformat().replace("+00:00", "Z")
