"""Shared helpers."""

from .clock import (
    from_epoch_ms,
    now_ms,
    parse_utc,
    to_epoch_ms,
    to_iso,
    truncate_to_ms,
    utc_now,
)
from .rounding import round_half_up

__all__ = [
    "from_epoch_ms",
    "now_ms",
    "parse_utc",
    "round_half_up",
    "to_epoch_ms",
    "to_iso",
    "truncate_to_ms",
    "utc_now",
]
