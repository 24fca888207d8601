"""Canonical timestamp utilities.

This module is the single source of truth for how the persistence layer
reads and writes time values:
- Stored timestamps are timezone-naive strings: YYYY-MM-DD HH:MM:SS
- Durations are whole seconds, never negative once an entry is closed
- Reading is lenient (ISO `T` separator, microseconds, offsets), writing is not

Offset-bearing inputs keep their wall-clock value; the offset is dropped.
Cross-timezone data is not reconciled here.
"""

from __future__ import annotations

from datetime import datetime, timedelta

# Canonical storage format, identical to SQLite's CURRENT_TIMESTAMP
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Filename-safe stamp used for backup files
BACKUP_STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"

_NAIVE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",  # With microseconds
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)


def now_local() -> datetime:
    """Return the current local time, truncated to whole seconds."""
    return datetime.now().replace(microsecond=0)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime in the canonical storage format.

    Args:
        dt: Datetime to format. Any tzinfo is ignored (wall clock is kept).

    Returns:
        Timestamp string: YYYY-MM-DD HH:MM:SS.
    """
    return dt.replace(tzinfo=None).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a stored timestamp into a naive datetime.

    Accepts the canonical format plus the variants found in older
    databases (ISO `T` separator, fractional seconds, trailing `Z` or
    numeric offsets, date-only values).

    Args:
        value: Timestamp string or datetime.

    Returns:
        Naive datetime with microseconds dropped.

    Raises:
        ValueError: If the value is empty or matches no known format.
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None, microsecond=0)

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty timestamp string, got: {value!r}")

    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1]

    try:
        dt = datetime.fromisoformat(raw)
        return dt.replace(tzinfo=None, microsecond=0)
    except ValueError:
        pass

    for fmt in _NAIVE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).replace(microsecond=0)
        except ValueError:
            continue

    raise ValueError(f"Cannot parse timestamp: {value!r}")


def try_parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a timestamp, returning None for empty or malformed values."""
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def seconds_between(start: str | datetime, end: str | datetime) -> int:
    """Return `end - start` in whole seconds (may be negative).

    Raises:
        ValueError: If either timestamp cannot be parsed.
    """
    delta = parse_timestamp(end) - parse_timestamp(start)
    return int(delta.total_seconds())


def shift_timestamp(value: str | datetime, seconds: int) -> str:
    """Return `value + seconds` as a canonical timestamp string.

    Raises:
        ValueError: If the timestamp cannot be parsed.
    """
    return format_timestamp(parse_timestamp(value) + timedelta(seconds=seconds))


def normalize_interval(
    start: str | None,
    end: str | None,
    fallback_duration: int | None = None,
) -> tuple[str | None, str | None, int]:
    """Normalize a closed interval so that `duration == max(0, end - start)`.

    When both bounds parse, an end before the start collapses to a
    zero-length entry at the start. When they don't, the bounds are kept
    as-is and the fallback duration (floored at zero) is used.

    Args:
        start: Start timestamp.
        end: End timestamp.
        fallback_duration: Duration to report when the bounds are unusable.

    Returns:
        Tuple of (start, end, duration_seconds).
    """
    start_dt = try_parse_timestamp(start)
    end_dt = try_parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return start, end, max(0, int(fallback_duration or 0))

    if end_dt <= start_dt:
        return start, start, 0
    return start, end, int((end_dt - start_dt).total_seconds())


def backup_stamp(dt: datetime | None = None) -> str:
    """Return a filename-safe stamp (YYYY-MM-DDTHH-MM-SS) for backups."""
    return (dt or now_local()).strftime(BACKUP_STAMP_FORMAT)
