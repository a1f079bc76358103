"""
Checkout integrity service - the inbound API host handlers call.

Owns one PipelineTracker, one RiskEngine and the velocity store behind it.
Instances are built with create_service(); nothing here is a module-level
singleton, so tests and tenants can run side by side.
"""

from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict
from redis.asyncio import Redis

from .config import Settings, get_settings
from .exceptions import ValidationError
from .fraud.models import AssessmentInput, FraudCheckMetadata, KeyType, RiskAssessment
from .fraud.services.risk_engine import RiskEngine, coerce_assessment_input, create_risk_engine
from .fraud.services.velocity_store import InMemoryVelocityStorage, VelocityStorage
from .infrastructure.redis.client import create_redis_client
from .infrastructure.redis.pipeline_storage import (
    RedisChecksumRegistryStorage,
    RedisPipelineStorage,
)
from .infrastructure.redis.velocity_tracker import RedisVelocityStorage
from .pipeline.constants import MAX_SEQUENCE
from .pipeline.definitions import PipelineDefinition
from .pipeline.events import EventStatus, PipelineEvent, PipelineStep, create_pipeline_event
from .pipeline.tracker import IssueReport, PipelineTracker, StatusSummary, TrackResult

logger = structlog.get_logger()

FRAUD_CHECK_HANDLER = "risk_engine"


class FraudCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    assessment: RiskAssessment
    tracked: TrackResult


class CheckoutIntegrityService:
    """Event tracking and risk assessment for checkout sessions."""

    def __init__(
        self,
        tracker: PipelineTracker,
        risk_engine: RiskEngine,
        velocity_store: VelocityStorage,
    ):
        self.tracker = tracker
        self.risk_engine = risk_engine
        self.velocity_store = velocity_store

    # ── Pipeline ───────────────────────────────────────────────

    async def track_event(
        self,
        event: Union[PipelineEvent, Dict[str, Any]],
        definition: Optional[PipelineDefinition] = None,
    ) -> TrackResult:
        return await self.tracker.track_event(event, definition)

    async def get_events(self, session_id: str) -> List[PipelineEvent]:
        return await self.tracker.get_events(session_id)

    async def get_status_summary(
        self, session_id: str, definition: PipelineDefinition
    ) -> StatusSummary:
        return await self.tracker.get_status_summary(session_id, definition)

    async def generate_issue_report(
        self, session_id: str, definition: PipelineDefinition
    ) -> IssueReport:
        return await self.tracker.generate_issue_report(session_id, definition)

    # ── Antifraud ──────────────────────────────────────────────

    async def assess_risk(
        self,
        input: Union[AssessmentInput, Dict[str, Any]],
        allow_threshold: Optional[int] = None,
        block_threshold: Optional[int] = None,
    ) -> RiskAssessment:
        return await self.risk_engine.assess(input, allow_threshold, block_threshold)

    async def record_velocity(
        self, key: str, key_type: Union[KeyType, str], session_id: str
    ) -> None:
        await self.velocity_store.record(key, key_type, session_id)

    async def assess_and_track(
        self,
        input: Union[AssessmentInput, Dict[str, Any]],
        definition: PipelineDefinition,
        allow_threshold: Optional[int] = None,
        block_threshold: Optional[int] = None,
    ) -> FraudCheckResult:
        """
        Assess a session and record the outcome as a fraud_check event.

        Events and the current chain hash are taken from the tracker when
        the input leaves them out. Repeated checks get increasing sequence
        numbers; a session that has used them all is rejected before any
        velocity is recorded.
        """
        data = coerce_assessment_input(input)
        events = await self.tracker.get_events(data.session_id)
        pipeline_events = [e for e in events if e.pipeline_type == definition.type]

        updates: Dict[str, Any] = {}
        if not data.events:
            updates["events"] = tuple(pipeline_events)
        if data.current_chain_hash is None:
            checksum = await self.tracker.get_current_checksum(data.session_id, definition)
            updates["current_chain_hash"] = checksum.chain_hash
        if updates:
            data = data.model_copy(update=updates)

        previous_checks = sum(1 for e in pipeline_events if e.step == PipelineStep.FRAUD_CHECK)
        if previous_checks > MAX_SEQUENCE:
            raise ValidationError(
                f"Session {data.session_id} already has {previous_checks} fraud checks",
                errors=[{"field": "sequence", "message": f"must be within 0..{MAX_SEQUENCE}"}],
            )

        assessment = await self.assess_risk(data, allow_threshold, block_threshold)

        metadata = FraudCheckMetadata(
            assessment=assessment,
            device_fingerprint=data.device_fingerprint,
        )
        event = create_pipeline_event(
            session_id=data.session_id,
            pipeline_type=definition.type,
            step=PipelineStep.FRAUD_CHECK,
            status=EventStatus.SUCCESS,
            sequence=previous_checks,
            handler=FRAUD_CHECK_HANDLER,
            metadata=metadata.model_dump(mode="json", exclude_none=True),
        )
        tracked = await self.tracker.track_event(event, definition)

        logger.info(
            "service.fraud_check_tracked",
            session_id=data.session_id,
            decision=assessment.decision.value,
            total_score=assessment.total_score,
            sequence=previous_checks,
        )
        return FraudCheckResult(assessment=assessment, tracked=tracked)


def create_service(
    settings: Optional[Settings] = None,
    redis_client: Optional[Redis] = None,
) -> CheckoutIntegrityService:
    """
    Factory function to create a configured service.

    With storage_backend=redis the given client is used, or one is created
    from redis_url.
    """
    settings = settings or get_settings()
    window_ms = settings.velocity_window_ms

    if settings.uses_redis:
        redis_client = redis_client or create_redis_client(settings.redis_url)
        velocity_store: VelocityStorage = RedisVelocityStorage(redis_client, window_ms=window_ms)
        tracker = PipelineTracker(
            event_storage=RedisPipelineStorage(redis_client),
            registry_storage=RedisChecksumRegistryStorage(redis_client),
            auto_snapshot=settings.auto_snapshot,
        )
    else:
        velocity_store = InMemoryVelocityStorage(window_ms=window_ms)
        tracker = PipelineTracker(auto_snapshot=settings.auto_snapshot)

    logger.info(
        "service.created",
        storage_backend=settings.storage_backend,
        auto_snapshot=settings.auto_snapshot,
    )
    return CheckoutIntegrityService(
        tracker=tracker,
        risk_engine=create_risk_engine(settings, velocity_store),
        velocity_store=velocity_store,
    )
