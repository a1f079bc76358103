"""
Hierarchical event ID - the coordinate of a step occurrence.

Structure: {session_id}.{pipeline_type}.{step}.{sequence}

    "chk_001.checkout_physical.buyer_validated.0"
    "chk_001.checkout_physical.payment_confirmed.1"      <- retry
    "chk_001.checkout_subscription.webhook_verified.0"

The separator cannot appear in any segment, so encode/decode are exact
inverses for every valid coordinate.
"""

from enum import Enum
from typing import NamedTuple, Union

from ..exceptions import EventIdFormatError
from .constants import (
    EVENT_ID_SEPARATOR,
    MAX_SEQUENCE,
    PIPELINE_SEGMENT_PATTERN,
    STEP_SEGMENT_PATTERN,
    validate_session_id,
)


class ParsedEventId(NamedTuple):
    session_id: str
    pipeline_type: str
    step: str
    sequence: int


def _segment(value: Union[str, Enum]) -> str:
    return value.value if isinstance(value, Enum) else value


def encode_event_id(
    session_id: str,
    pipeline_type: Union[str, Enum],
    step: Union[str, Enum],
    sequence: int = 0,
) -> str:
    """Build the composite id; raises EventIdFormatError on any bad segment."""
    pipeline = _segment(pipeline_type)
    step_name = _segment(step)
    candidate = f"{session_id}.{pipeline}.{step_name}.{sequence}"

    try:
        validate_session_id(session_id)
    except ValueError as e:
        raise EventIdFormatError(candidate, str(e)) from e
    if not isinstance(pipeline, str) or not PIPELINE_SEGMENT_PATTERN.fullmatch(pipeline):
        raise EventIdFormatError(candidate, "pipeline type must match [a-z_]+")
    if not isinstance(step_name, str) or not STEP_SEGMENT_PATTERN.fullmatch(step_name):
        raise EventIdFormatError(candidate, "step must match [a-z_]+")
    if isinstance(sequence, bool) or not isinstance(sequence, int):
        raise EventIdFormatError(candidate, "sequence must be an integer")
    if not 0 <= sequence <= MAX_SEQUENCE:
        raise EventIdFormatError(candidate, f"sequence must be within 0..{MAX_SEQUENCE}")

    return candidate


def decode_event_id(event_id: str) -> ParsedEventId:
    """Split a composite id back into its coordinate."""
    if not isinstance(event_id, str):
        raise EventIdFormatError(str(event_id), "event id must be a string")

    parts = event_id.split(EVENT_ID_SEPARATOR)
    if len(parts) != 4:
        raise EventIdFormatError(event_id, f"expected 4 segments, got {len(parts)}")

    session_id, pipeline_type, step, raw_sequence = parts
    if not raw_sequence.isdigit() or not raw_sequence.isascii():
        raise EventIdFormatError(event_id, "sequence segment must be numeric")

    # Re-encoding validates every segment and the sequence range
    encode_event_id(session_id, pipeline_type, step, int(raw_sequence))
    return ParsedEventId(session_id, pipeline_type, step, int(raw_sequence))


def is_valid_event_id(event_id: str) -> bool:
    try:
        decode_event_id(event_id)
    except EventIdFormatError:
        return False
    return True
