"""
Risk engine - runs every collector for a session and decides allow/review/block.

Flow:
1. Velocity (records this session, reads the window back)
2. Timing, chain hash mutation, input mutation, geo, device collectors
3. Caller-supplied custom signals
4. Weighted score and threshold decision
5. Validate the assessment before returning it

A velocity store failure aborts the assessment unchanged (StorageError);
any other collector failure aborts it as a ComputationError naming the
collector. Nothing is silently skipped.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from ...exceptions import ComputationError, ValidationError
from ...utils.clock import utc_now
from ..models import (
    DEFAULT_SIGNAL_WEIGHTS,
    AssessmentInput,
    RiskAssessment,
    RiskSignal,
    RiskThresholds,
    SignalWeights,
    TimingThresholds,
    VelocityLimits,
)
from .risk_scorer import RiskScorer
from .signal_collector import (
    collect_chain_hash_mutation_signals,
    collect_device_anomaly_signals,
    collect_geo_mismatch_signals,
    collect_input_mutation_signals,
    collect_timing_signals,
    collect_velocity_signals,
)
from .velocity_store import InMemoryVelocityStorage, VelocityStorage

logger = structlog.get_logger()


@dataclass
class AssessmentConfig:
    """Collaborators and tunables for one assessment."""
    velocity_store: VelocityStorage
    allow_threshold: Optional[int] = None
    block_threshold: Optional[int] = None
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS
    velocity_limits: VelocityLimits = field(default_factory=VelocityLimits)
    timing: TimingThresholds = field(default_factory=TimingThresholds)


def _run_collector(name: str, collector: Callable[..., List[RiskSignal]], **kwargs: Any) -> List[RiskSignal]:
    try:
        return collector(**kwargs)
    except Exception as e:
        raise ComputationError(
            f"Signal collector {name} failed: {e}",
            collector=name,
        ) from e


def coerce_assessment_input(data: Union[AssessmentInput, Dict[str, Any]]) -> AssessmentInput:
    if isinstance(data, AssessmentInput):
        return data
    try:
        return AssessmentInput.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "AssessmentInput") from e


async def assess_risk(
    input: Union[AssessmentInput, Dict[str, Any]],
    config: AssessmentConfig,
) -> RiskAssessment:
    """
    Run all collectors and produce a validated RiskAssessment.

    Raises:
        ValidationError: malformed input
        StorageError: velocity store failed
        ComputationError: a collector failed or the result is malformed
    """
    data = coerce_assessment_input(input)
    start_time = time.perf_counter()
    signals: List[RiskSignal] = []

    # Velocity store failures propagate as-is
    signals.extend(await collect_velocity_signals(
        data.session_id,
        config.velocity_store,
        email=data.email,
        ip=data.ip,
        device_hash=data.device_hash,
        limits=config.velocity_limits,
        weights=config.weights,
    ))

    signals.extend(_run_collector(
        "timing",
        collect_timing_signals,
        events=data.events,
        thresholds=config.timing,
        weights=config.weights,
    ))

    if data.current_chain_hash:
        signals.extend(_run_collector(
            "chain_hash_mutation",
            collect_chain_hash_mutation_signals,
            current_chain_hash=data.current_chain_hash,
            previous_chain_hash=data.previous_chain_hash,
            events=data.events,
            weights=config.weights,
        ))

    signals.extend(_run_collector(
        "input_mutation",
        collect_input_mutation_signals,
        events=data.events,
        weights=config.weights,
    ))

    signals.extend(_run_collector(
        "geo_mismatch",
        collect_geo_mismatch_signals,
        billing_country=data.billing_country,
        ip_country=data.ip_country,
        weights=config.weights,
    ))

    signals.extend(_run_collector(
        "device_anomaly",
        collect_device_anomaly_signals,
        fingerprint=data.device_fingerprint,
        weights=config.weights,
    ))

    signals.extend(data.custom_signals)

    total_score, decision = RiskScorer(config.thresholds).score(
        signals,
        allow_threshold=config.allow_threshold,
        block_threshold=config.block_threshold,
    )

    try:
        assessment = RiskAssessment(
            session_id=data.session_id,
            total_score=total_score,
            decision=decision,
            signals=tuple(signals),
            chain_hash=data.current_chain_hash,
            assessed_at=utc_now(),
        )
    except PydanticValidationError as e:
        raise ComputationError(
            f"Risk assessment for {data.session_id} failed validation: {e}",
            session_id=data.session_id,
        ) from e

    logger.info(
        "risk_engine.assessed",
        session_id=data.session_id,
        total_score=total_score,
        decision=decision.value,
        signals=[s.signal for s in signals],
        latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
    return assessment


class RiskEngine:
    """
    Risk assessment service bound to one velocity store and one set of tunables.
    """

    def __init__(
        self,
        velocity_store: VelocityStorage,
        thresholds: Optional[RiskThresholds] = None,
        weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
        velocity_limits: Optional[VelocityLimits] = None,
        timing: Optional[TimingThresholds] = None,
    ):
        self.velocity_store = velocity_store
        self.thresholds = thresholds or RiskThresholds()
        self.weights = weights
        self.velocity_limits = velocity_limits or VelocityLimits()
        self.timing = timing or TimingThresholds()

    def config(
        self,
        allow_threshold: Optional[int] = None,
        block_threshold: Optional[int] = None,
    ) -> AssessmentConfig:
        return AssessmentConfig(
            velocity_store=self.velocity_store,
            allow_threshold=allow_threshold,
            block_threshold=block_threshold,
            thresholds=self.thresholds,
            weights=self.weights,
            velocity_limits=self.velocity_limits,
            timing=self.timing,
        )

    async def assess(
        self,
        input: Union[AssessmentInput, Dict[str, Any]],
        allow_threshold: Optional[int] = None,
        block_threshold: Optional[int] = None,
    ) -> RiskAssessment:
        return await assess_risk(input, self.config(allow_threshold, block_threshold))

    async def record_velocity(self, key: str, key_type: str, session_id: str) -> None:
        await self.velocity_store.record(key, key_type, session_id)


def create_risk_engine(settings=None, velocity_store: Optional[VelocityStorage] = None) -> RiskEngine:
    """Factory function to create a configured RiskEngine."""
    if settings is None:
        from ...config import get_settings
        settings = get_settings()

    velocity_limits = settings.velocity_limits()
    if velocity_store is None:
        velocity_store = InMemoryVelocityStorage(window_ms=velocity_limits.window_ms)

    return RiskEngine(
        velocity_store=velocity_store,
        thresholds=settings.risk_thresholds(),
        weights=settings.weights(),
        velocity_limits=velocity_limits,
        timing=settings.timing_thresholds(),
    )
