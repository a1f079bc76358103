"""
Pipeline checksum - tamper-evident chain hash for a checkout run.

Each step's checksums feed into the next step hash, so the final chain hash
is a small receipt for the whole run:

    step_hash_0 = H("GENESIS:" + input_0 + ":" + output_0)
    step_hash_n = H(step_hash_{n-1} + ":" + input_n + ":" + output_n)
    chain_hash  = H(session_id + ":" + step_hash_last)      # or H(session_id + ":EMPTY")

Guarantees:
1. Determinism: the same event set always yields the same chain hash
2. Sensitivity: changing any checksum, or the order of steps, changes it
3. Session scoping: identical steps under another session hash differently

Validity is independent of the hash: every required step needs a success.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..utils.clock import to_iso, utc_now
from .constants import validate_checksum
from .definitions import PipelineDefinition, get_pipeline_definition
from .events import EventStatus, PipelineEvent, PipelineStep

GENESIS = "GENESIS"
EMPTY_MARKER = "EMPTY"


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def compute_data_checksum(data: Any) -> str:
    """
    Checksum a step payload (input or output).

    Keys are sorted at every depth so that logically equal payloads hash
    identically regardless of construction order.
    """
    serialized = json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return sha256_hex(serialized)


def compute_step_hash(
    previous_hash: str,
    input_checksum: Optional[str] = None,
    output_checksum: Optional[str] = None,
) -> str:
    return sha256_hex(f"{previous_hash}:{input_checksum or ''}:{output_checksum or ''}")


def order_events(events: Iterable[PipelineEvent]) -> List[PipelineEvent]:
    """
    Deterministic chain order.

    Timestamp ascending; equal timestamps fall back to sequence number and
    then to insertion order (sorted() is stable).
    """
    return sorted(events, key=lambda e: (e.timestamp, e.sequence))


def compute_chain_hash(session_id: str, events: Sequence[PipelineEvent]) -> str:
    """Chain hash over events that are already in chain order."""
    step_hashes = _step_hashes(events)
    if not step_hashes:
        return sha256_hex(f"{session_id}:{EMPTY_MARKER}")
    return sha256_hex(f"{session_id}:{step_hashes[-1][1]}")


def _step_hashes(events: Sequence[PipelineEvent]) -> List[Tuple[str, str]]:
    """(previous_hash, step_hash) per event."""
    hashes = []
    previous = GENESIS
    for event in events:
        current = compute_step_hash(previous, event.input_checksum, event.output_checksum)
        hashes.append((previous, current))
        previous = current
    return hashes


def _events_for(definition: PipelineDefinition, events: Iterable[PipelineEvent]) -> List[PipelineEvent]:
    return order_events(e for e in events if e.pipeline_type == definition.type)


def _step_outcomes(events: Sequence[PipelineEvent]) -> Tuple[set, set]:
    succeeded = {e.step for e in events if e.status == EventStatus.SUCCESS}
    failed = {e.step for e in events if e.status == EventStatus.FAILURE}
    return succeeded, failed


class PipelineChecksum(BaseModel):
    """Derived checksum state of one session's pipeline run."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    pipeline_type: str
    steps_expected: int = Field(ge=0)
    steps_completed: int = Field(ge=0)
    steps_failed: int = Field(ge=0)
    is_valid: bool
    chain_hash: str
    computed_at: datetime = Field(default_factory=utc_now)

    @field_validator("chain_hash")
    @classmethod
    def check_chain_hash(cls, v: str) -> str:
        return validate_checksum(v)

    @field_serializer("computed_at")
    def serialize_computed_at(self, v: datetime) -> str:
        return to_iso(v)


def compute_pipeline_checksum(
    session_id: str,
    definition: PipelineDefinition,
    events: Iterable[PipelineEvent],
) -> PipelineChecksum:
    """
    Compute the checksum for a session's run of `definition`.

    Events of other pipeline types are ignored. Pure function: safe to call
    concurrently and repeatedly.
    """
    ordered = _events_for(definition, events)
    succeeded, failed = _step_outcomes(ordered)

    return PipelineChecksum(
        session_id=session_id,
        pipeline_type=definition.type,
        steps_expected=definition.steps_expected,
        steps_completed=len(succeeded),
        steps_failed=len(failed),
        is_valid=all(step in succeeded for step in definition.required_steps),
        chain_hash=compute_chain_hash(session_id, ordered),
    )


class ReceiptEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    step: PipelineStep
    status: EventStatus
    sequence: int
    timestamp: datetime
    input_checksum: Optional[str] = None
    output_checksum: Optional[str] = None
    previous_hash: str
    step_hash: str

    @field_serializer("timestamp")
    def serialize_timestamp(self, v: datetime) -> str:
        return to_iso(v)


class PipelineReceipt(BaseModel):
    """The step-by-step derivation of a chain hash, for audit trails."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    pipeline_type: str
    entries: Tuple[ReceiptEntry, ...]
    chain_hash: str
    is_valid: bool
    computed_at: datetime = Field(default_factory=utc_now)

    @field_serializer("computed_at")
    def serialize_computed_at(self, v: datetime) -> str:
        return to_iso(v)


def compute_pipeline_receipt(
    session_id: str,
    definition: PipelineDefinition,
    events: Iterable[PipelineEvent],
) -> PipelineReceipt:
    ordered = _events_for(definition, events)
    succeeded, _ = _step_outcomes(ordered)

    entries = tuple(
        ReceiptEntry(
            event_id=event.id,
            step=event.step,
            status=event.status,
            sequence=event.sequence,
            timestamp=event.timestamp,
            input_checksum=event.input_checksum,
            output_checksum=event.output_checksum,
            previous_hash=previous,
            step_hash=current,
        )
        for event, (previous, current) in zip(ordered, _step_hashes(ordered))
    )

    return PipelineReceipt(
        session_id=session_id,
        pipeline_type=definition.type,
        entries=entries,
        chain_hash=compute_chain_hash(session_id, ordered),
        is_valid=all(step in succeeded for step in definition.required_steps),
    )


def verify_receipt(
    receipt: PipelineReceipt,
    events: Iterable[PipelineEvent],
    definition: Optional[PipelineDefinition] = None,
) -> bool:
    """
    True when `events` still reproduce every step hash of `receipt`.

    The definition defaults to the built-in one for the receipt's pipeline
    type; only its type matters for hashing.
    """
    if definition is None:
        definition = get_pipeline_definition(receipt.pipeline_type)
    if definition is None:
        definition = PipelineDefinition(name=receipt.pipeline_type, type=receipt.pipeline_type)
    current = compute_pipeline_receipt(receipt.session_id, definition, events)
    if current.chain_hash != receipt.chain_hash:
        return False
    return [e.step_hash for e in current.entries] == [e.step_hash for e in receipt.entries]
