"""
Pipeline tracker - one service for events and the checksum registry.

Use cases:
1. Record events as they occur in the checkout flow
2. Snapshot checksum state into the registry (automatically or on demand)
3. Query current state for dashboards and polling clients
4. Generate issue reports with historical context
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_serializer

from ..utils.clock import to_iso, utc_now
from .checksum import PipelineChecksum, compute_pipeline_checksum, order_events
from .definitions import PipelineDefinition
from .event_log import EventLog, InMemoryPipelineStorage, PipelineStorage
from .events import EventStatus, PipelineEvent, PipelineStep
from .registry import (
    ChecksumRegistryEntry,
    ChecksumRegistryStorage,
    InMemoryChecksumRegistryStorage,
    create_registry_entry,
)

logger = structlog.get_logger()


class TrackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: PipelineEvent
    snapshot: Optional[ChecksumRegistryEntry] = None


class StatusSummary(BaseModel):
    """Everything a polling client needs for one session and pipeline type."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    pipeline_type: str
    events: Tuple[PipelineEvent, ...]
    current_checksum: PipelineChecksum
    latest_snapshot: Optional[ChecksumRegistryEntry] = None
    registry_history: Tuple[ChecksumRegistryEntry, ...] = ()


class IssueReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    pipeline_type: str
    is_valid: bool
    failed_steps: Tuple[PipelineStep, ...]
    missing_steps: Tuple[PipelineStep, ...]
    events: Tuple[PipelineEvent, ...]
    checksum_history: Tuple[ChecksumRegistryEntry, ...]
    report_generated_at: datetime = Field(default_factory=utc_now)

    @field_serializer("report_generated_at")
    def serialize_generated_at(self, v: datetime) -> str:
        return to_iso(v)


class PipelineTracker:
    """
    Unified tracker for pipeline events and checksum snapshots.

    Instances are explicitly constructed and own their storage; there is
    no process-wide tracker.
    """

    def __init__(
        self,
        event_storage: Optional[PipelineStorage] = None,
        registry_storage: Optional[ChecksumRegistryStorage] = None,
        auto_snapshot: bool = True,
    ):
        self.event_log = EventLog(event_storage or InMemoryPipelineStorage())
        self.registry_storage = registry_storage or InMemoryChecksumRegistryStorage()
        self.auto_snapshot = auto_snapshot

    async def track_event(
        self,
        event: Union[PipelineEvent, Dict[str, Any]],
        definition: Optional[PipelineDefinition] = None,
    ) -> TrackResult:
        """
        Append an event and, with a definition, snapshot the chain state.

        Returns only after both the event and its snapshot are stored.
        """
        stored = await self.event_log.append(event)

        snapshot = None
        if self.auto_snapshot and definition is not None:
            snapshot = await self.snapshot_checksum(
                stored.session_id,
                definition,
                notes=f"Auto-snapshot after event: {stored.step.value}",
            )

        return TrackResult(event=stored, snapshot=snapshot)

    async def get_events(self, session_id: str) -> List[PipelineEvent]:
        return await self.event_log.list_by_session(session_id)

    async def snapshot_checksum(
        self,
        session_id: str,
        definition: PipelineDefinition,
        notes: Optional[str] = None,
    ) -> ChecksumRegistryEntry:
        """Compute the current checksum and store it as a registry entry."""
        events = await self.get_events(session_id)
        checksum = compute_pipeline_checksum(session_id, definition, events)
        event_ids = [e.id for e in events if e.pipeline_type == definition.type]

        entry = create_registry_entry(checksum, event_ids=event_ids, notes=notes)
        await self.registry_storage.store(entry)

        logger.info(
            "tracker.snapshot",
            session_id=session_id,
            pipeline_type=definition.type,
            chain_hash=entry.chain_hash,
            is_valid=entry.is_valid,
        )
        return entry

    async def get_current_checksum(
        self, session_id: str, definition: PipelineDefinition
    ) -> PipelineChecksum:
        """Fresh checksum, not stored."""
        events = await self.get_events(session_id)
        return compute_pipeline_checksum(session_id, definition, events)

    async def get_registry_history(self, session_id: str) -> List[ChecksumRegistryEntry]:
        """Registry entries for a session, newest first."""
        return await self.registry_storage.list_by_session(session_id)

    async def get_latest_snapshot(self, session_id: str) -> Optional[ChecksumRegistryEntry]:
        return await self.registry_storage.latest(session_id)

    async def get_status_summary(
        self, session_id: str, definition: PipelineDefinition
    ) -> StatusSummary:
        events = await self.get_events(session_id)
        history = [
            entry
            for entry in await self.get_registry_history(session_id)
            if entry.pipeline_type == definition.type
        ]

        return StatusSummary(
            session_id=session_id,
            pipeline_type=definition.type,
            events=tuple(order_events(e for e in events if e.pipeline_type == definition.type)),
            current_checksum=compute_pipeline_checksum(session_id, definition, events),
            latest_snapshot=history[0] if history else None,
            registry_history=tuple(history),
        )

    async def generate_issue_report(
        self, session_id: str, definition: PipelineDefinition
    ) -> IssueReport:
        """Debugging view of a session: what failed, what never happened."""
        summary = await self.get_status_summary(session_id, definition)

        failed_steps: List[PipelineStep] = []
        for event in summary.events:
            if event.status == EventStatus.FAILURE and event.step not in failed_steps:
                failed_steps.append(event.step)

        completed = {e.step for e in summary.events if e.status == EventStatus.SUCCESS}
        missing_steps = [step for step in definition.required_steps if step not in completed]

        return IssueReport(
            session_id=session_id,
            pipeline_type=definition.type,
            is_valid=summary.current_checksum.is_valid,
            failed_steps=tuple(failed_steps),
            missing_steps=tuple(missing_steps),
            events=summary.events,
            checksum_history=summary.registry_history,
        )

    async def clear(self) -> None:
        await self.event_log.clear()
        await self.registry_storage.clear()
