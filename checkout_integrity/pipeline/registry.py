"""
Checksum registry - point-in-time snapshots of a session's chain state.

Entries are never mutated. Comparing the latest entry with a freshly
computed checksum shows whether the event log changed since the snapshot.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_serializer, field_validator

from ..exceptions import ValidationError
from ..utils.clock import parse_utc, to_epoch_ms, to_iso, utc_now
from .checksum import PipelineChecksum
from .constants import validate_checksum, validate_session_id


class ChecksumRegistryEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    session_id: str
    pipeline_type: str = Field(min_length=1)
    chain_hash: str
    steps_expected: int = Field(ge=0)
    steps_completed: int = Field(ge=0)
    steps_failed: int = Field(ge=0)
    is_valid: bool
    created_at: datetime
    notes: Optional[str] = None
    event_ids: Tuple[str, ...] = ()

    @field_validator("session_id")
    @classmethod
    def check_session_id(cls, v: str) -> str:
        return validate_session_id(v)

    @field_validator("chain_hash")
    @classmethod
    def check_chain_hash(cls, v: str) -> str:
        return validate_checksum(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def ensure_utc(cls, v):
        return parse_utc(v)

    @field_serializer("created_at")
    def serialize_created_at(self, v: datetime) -> str:
        return to_iso(v)


def create_registry_entry(
    checksum: PipelineChecksum,
    event_ids: Sequence[str] = (),
    notes: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> ChecksumRegistryEntry:
    """Snapshot a computed checksum. Raises ValidationError on bad input."""
    created = created_at or utc_now()
    entry_id = f"reg_{checksum.session_id}_{to_epoch_ms(created)}_{uuid.uuid4().hex[:8]}"
    try:
        return ChecksumRegistryEntry(
            id=entry_id,
            session_id=checksum.session_id,
            pipeline_type=checksum.pipeline_type,
            chain_hash=checksum.chain_hash,
            steps_expected=checksum.steps_expected,
            steps_completed=checksum.steps_completed,
            steps_failed=checksum.steps_failed,
            is_valid=checksum.is_valid,
            created_at=created,
            notes=notes,
            event_ids=tuple(event_ids),
        )
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "ChecksumRegistryEntry") from e


def parse_registry_entry(data: Any) -> ChecksumRegistryEntry:
    try:
        if isinstance(data, (str, bytes)):
            return ChecksumRegistryEntry.model_validate_json(data)
        return ChecksumRegistryEntry.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "ChecksumRegistryEntry") from e


class ChecksumRegistryStorage(Protocol):
    """Interface for registry storage."""

    async def store(self, entry: ChecksumRegistryEntry) -> None:
        ...

    async def list_by_session(self, session_id: str) -> List[ChecksumRegistryEntry]:
        """Entries of a session, newest first."""
        ...

    async def latest(self, session_id: str) -> Optional[ChecksumRegistryEntry]:
        ...

    async def clear(self) -> None:
        ...


class InMemoryChecksumRegistryStorage:
    """
    In-memory registry.

    Newest first by created_at; entries created in the same millisecond are
    ordered by reverse insertion.
    """

    def __init__(self):
        self._entries: Dict[str, List[ChecksumRegistryEntry]] = {}

    async def store(self, entry: ChecksumRegistryEntry) -> None:
        self._entries.setdefault(entry.session_id, []).append(entry)

    async def list_by_session(self, session_id: str) -> List[ChecksumRegistryEntry]:
        newest_inserted_first = list(reversed(self._entries.get(session_id, [])))
        return sorted(newest_inserted_first, key=lambda e: e.created_at, reverse=True)

    async def latest(self, session_id: str) -> Optional[ChecksumRegistryEntry]:
        entries = await self.list_by_session(session_id)
        return entries[0] if entries else None

    async def clear(self) -> None:
        self._entries.clear()
