"""
Canonical timestamp helpers.

All persisted timestamps are UTC, truncated to millisecond precision and
rendered as ISO-8601 with a trailing "Z" (e.g. 2024-01-15T10:23:45.123Z).
"""

import time
from datetime import datetime, timezone
from typing import Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime at millisecond precision."""
    return truncate_to_ms(datetime.now(timezone.utc))


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def truncate_to_ms(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def to_iso(value: datetime) -> str:
    """Render an aware datetime as ISO-8601 UTC with milliseconds."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def from_epoch_ms(ms: Union[int, float]) -> datetime:
    return truncate_to_ms(datetime.fromtimestamp(ms / 1000, tz=timezone.utc))


def to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def parse_utc(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Naive values are rejected: a timestamp without a zone is ambiguous.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if not isinstance(value, datetime):
        raise ValueError(f"Expected ISO-8601 timestamp, got {type(value).__name__}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("Timestamp must include a time zone")
    return truncate_to_ms(value.astimezone(timezone.utc))
