from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

import structlog

UTC = timezone.utc

Clock = Callable[[], datetime]

logger = structlog.get_logger()


def utc_now() -> datetime:
    """Return a tz-aware UTC timestamp."""
    return datetime.now(UTC)


def is_tz_aware(value: datetime) -> bool:
    """True if a datetime is timezone-aware (has a non-None UTC offset)."""
    return value.tzinfo is not None and value.utcoffset() is not None


def coerce_utc(value: datetime, *, assume_naive_is_utc: bool = True) -> datetime:
    """Coerce any datetime to tz-aware UTC.

    Storage adapters call this on values read back from `timestamp without
    time zone` columns.
    """
    if is_tz_aware(value):
        return value.astimezone(UTC)

    if not assume_naive_is_utc:
        raise ValueError("Naive datetime cannot be coerced without an explicit assumption")

    return value.replace(tzinfo=UTC)


def isoformat_z(value: datetime) -> str:
    """RFC3339-ish UTC string with a `Z` suffix."""
    dt = coerce_utc(value)
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso8601(value: str) -> datetime:
    """Parse ISO8601/RFC3339 timestamps into tz-aware UTC datetimes.

    Supports `Z` suffix. Naive strings are taken as UTC.
    """
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    return coerce_utc(datetime.fromisoformat(normalized))


def to_epoch(value: datetime) -> int:
    """Epoch seconds, as the Front API expects for `q[after]` / `q[before]`."""
    return int(coerce_utc(value).timestamp())


def parse_remote_timestamp(value: Any) -> datetime | None:
    """Parse a remote timestamp (epoch seconds or ISO-8601 string).

    Unparseable values are logged and treated as "no timestamp".
    """
    if value is None or value == "":
        return None
    try:
        if isinstance(value, bool):
            raise TypeError("boolean is not a timestamp")
        if isinstance(value, (int, float, Decimal)):
            return datetime.fromtimestamp(float(value), tz=UTC)
        if isinstance(value, datetime):
            return coerce_utc(value)
        if isinstance(value, str):
            return parse_iso8601(value)
        raise TypeError(f"unsupported timestamp type {type(value).__name__}")
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        logger.warning("Failed to parse timestamp", value=repr(value), error=str(exc))
        return None
