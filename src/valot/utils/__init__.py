"""Utility modules.

This package provides shared utilities used across the codebase.
"""

from .time import (
    BACKUP_STAMP_FORMAT,
    TIMESTAMP_FORMAT,
    backup_stamp,
    format_timestamp,
    normalize_interval,
    now_local,
    parse_timestamp,
    seconds_between,
    shift_timestamp,
    try_parse_timestamp,
)

__all__ = [
    # Time utilities (canonical timestamp handling)
    "BACKUP_STAMP_FORMAT",
    "TIMESTAMP_FORMAT",
    "backup_stamp",
    "format_timestamp",
    "normalize_interval",
    "now_local",
    "parse_timestamp",
    "seconds_between",
    "shift_timestamp",
    "try_parse_timestamp",
]
