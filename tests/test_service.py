"""
Test the checkout integrity service end to end.
"""

import pytest

from checkout_integrity import create_service
from checkout_integrity.config import Settings
from checkout_integrity.exceptions import ValidationError
from checkout_integrity.fraud.models import RiskDecision
from checkout_integrity.fraud.services.velocity_store import InMemoryVelocityStorage
from checkout_integrity.infrastructure.redis import RedisPipelineStorage, RedisVelocityStorage
from checkout_integrity.pipeline.definitions import PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD
from checkout_integrity.pipeline.events import PipelineStep

ANTIFRAUD = "checkout_digital_antifraud"


@pytest.fixture
def service(test_settings):
    return create_service(test_settings)


def test_create_service_memory_backend(service):
    assert isinstance(service.velocity_store, InMemoryVelocityStorage)
    assert service.risk_engine.velocity_store is service.velocity_store
    assert service.tracker.auto_snapshot is True


@pytest.mark.asyncio
async def test_create_service_redis_backend(redis_client):
    settings = Settings(_env_file=None, storage_backend="redis", auto_snapshot=False)

    service = create_service(settings, redis_client=redis_client)

    assert isinstance(service.velocity_store, RedisVelocityStorage)
    assert isinstance(service.tracker.event_log.storage, RedisPipelineStorage)
    assert service.tracker.auto_snapshot is False


def test_services_are_independent(test_settings):
    first = create_service(test_settings)
    second = create_service(test_settings)

    assert first.tracker is not second.tracker
    assert first.velocity_store is not second.velocity_store


@pytest.mark.asyncio
async def test_assess_and_track_records_fraud_check(service, make_event):
    await service.track_event(
        make_event("buyer_validated", pipeline_type=ANTIFRAUD, input_payload={"email": "a@example.com"}),
        PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD,
    )

    result = await service.assess_and_track(
        {"session_id": "chk_001", "email": "a@example.com", "billing_country": "US", "ip_country": "US"},
        PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD,
    )

    event = result.tracked.event
    assert event.step == PipelineStep.FRAUD_CHECK
    assert event.sequence == 0
    assert event.handler == "risk_engine"
    assert event.metadata["assessment"]["decision"] == result.assessment.decision.value
    assert event.metadata["assessment"]["total_score"] == result.assessment.total_score
    assert result.assessment.decision == RiskDecision.ALLOW
    assert result.assessment.chain_hash is not None
    assert result.tracked.snapshot.notes == "Auto-snapshot after event: fraud_check"


@pytest.mark.asyncio
async def test_repeated_fraud_checks_get_increasing_sequence(service):
    data = {"session_id": "chk_001"}

    first = await service.assess_and_track(data, PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD)
    second = await service.assess_and_track(data, PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD)

    assert first.tracked.event.sequence == 0
    assert second.tracked.event.sequence == 1
    assert second.tracked.event.id == "chk_001.checkout_digital_antifraud.fraud_check.1"


@pytest.mark.asyncio
async def test_fraud_check_sequence_exhausted_records_nothing(service, make_event):
    for sequence in range(100):
        await service.track_event(
            make_event("fraud_check", pipeline_type=ANTIFRAUD, sequence=sequence, offset_ms=sequence),
            PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD,
        )

    with pytest.raises(ValidationError):
        await service.assess_and_track(
            {"session_id": "chk_001", "email": "buyer@example.com"},
            PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD,
        )

    assert await service.velocity_store.get("buyer@example.com", "email") is None
    assert len(await service.get_events("chk_001")) == 100


@pytest.mark.asyncio
async def test_velocity_breach_across_sessions_is_reviewed(service):
    for i in range(6):
        assessment = await service.assess_risk({"session_id": f"chk_{i}", "email": "ring@example.com"})

    assert [s.signal for s in assessment.signals] == ["velocity_email"]
    assert assessment.total_score == 35
    assert assessment.decision == RiskDecision.REVIEW


@pytest.mark.asyncio
async def test_issue_report_through_service(service, make_event):
    await service.track_event(
        make_event("buyer_validated", pipeline_type=ANTIFRAUD), PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD
    )

    report = await service.generate_issue_report("chk_001", PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD)
    summary = await service.get_status_summary("chk_001", PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD)

    assert report.is_valid is False
    assert PipelineStep.FRAUD_CHECK in report.missing_steps
    assert len(summary.events) == 1
    assert len(await service.get_events("chk_001")) == 1


@pytest.mark.asyncio
async def test_record_velocity(service):
    await service.record_velocity("10.0.0.1", "ip", "chk_001")

    assert (await service.velocity_store.get("10.0.0.1", "ip")).count == 1
