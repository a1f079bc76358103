"""
Test pipeline event construction and validation.

An event that fails validation must never be stored, so every malformed
input is rejected at construction.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from checkout_integrity.exceptions import ValidationError
from checkout_integrity.pipeline.events import (
    EventStatus,
    PipelineEvent,
    PipelineStep,
    create_pipeline_event,
    parse_pipeline_event,
)

VALID_CHECKSUM = "a" * 64


def test_create_derives_composite_id():
    event = create_pipeline_event(
        session_id="chk_001",
        pipeline_type="checkout_physical",
        step="payment_confirmed",
        status="success",
        sequence=2,
    )

    assert event.id == "chk_001.checkout_physical.payment_confirmed.2"
    assert event.step == PipelineStep.PAYMENT_CONFIRMED
    assert event.status == EventStatus.SUCCESS


def test_timestamp_is_utc_milliseconds():
    event = create_pipeline_event(
        session_id="chk_001",
        pipeline_type="checkout_physical",
        step="buyer_validated",
        status="success",
        timestamp="2024-01-15T10:23:45.123456+02:00",
    )

    assert event.timestamp == datetime(2024, 1, 15, 8, 23, 45, 123000, tzinfo=timezone.utc)
    assert event.model_dump(mode="json")["timestamp"] == "2024-01-15T08:23:45.123Z"


def test_naive_timestamp_rejected():
    with pytest.raises(ValidationError):
        create_pipeline_event(
            session_id="chk_001",
            pipeline_type="checkout_physical",
            step="buyer_validated",
            status="success",
            timestamp=datetime(2024, 1, 15, 10, 0, 0),
        )


@pytest.mark.parametrize("overrides", [
    {"step": "not_a_step"},
    {"status": "done"},
    {"sequence": 100},
    {"session_id": "bad id"},
    {"pipeline_type": "Checkout"},
    {"input_checksum": "ABC"},
    {"input_checksum": "a" * 64 + "\n"},
    {"session_id": "chk_001\n"},
    {"pipeline_type": "checkout_physical\n"},
    {"output_checksum": "a" * 63},
    {"duration_ms": -1},
])
def test_invalid_fields_rejected(overrides):
    fields = {
        "session_id": "chk_001",
        "pipeline_type": "checkout_physical",
        "step": "buyer_validated",
        "status": "success",
        **overrides,
    }
    with pytest.raises(ValidationError):
        create_pipeline_event(**fields)


def test_mismatched_id_rejected():
    with pytest.raises(ValidationError) as exc_info:
        parse_pipeline_event({
            "id": "chk_001.checkout_physical.buyer_validated.1",
            "session_id": "chk_001",
            "pipeline_type": "checkout_physical",
            "step": "buyer_validated",
            "sequence": 0,
            "status": "success",
            "timestamp": "2024-01-15T10:00:00.000Z",
        })

    assert exc_info.value.error_code == "validation_error"


def test_unknown_fields_rejected():
    with pytest.raises(ValidationError):
        parse_pipeline_event({
            "session_id": "chk_001",
            "pipeline_type": "checkout_physical",
            "step": "buyer_validated",
            "status": "success",
            "timestamp": "2024-01-15T10:00:00.000Z",
            "amount": 10,
        })


def test_json_round_trip_preserves_event():
    event = create_pipeline_event(
        session_id="chk_001",
        pipeline_type="checkout_physical",
        step="buyer_validated",
        status="failure",
        handler="buyer_service",
        input_checksum=VALID_CHECKSUM,
        duration_ms=12.5,
        error="email rejected",
        metadata={"error_code": "invalid_email"},
    )

    assert parse_pipeline_event(event.model_dump_json()) == event


def test_events_are_immutable():
    event = create_pipeline_event(
        session_id="chk_001",
        pipeline_type="checkout_physical",
        step="buyer_validated",
        status="success",
    )

    with pytest.raises(PydanticValidationError):
        event.status = EventStatus.FAILURE
    assert isinstance(event, PipelineEvent)
