"""
Test composite event ids: {session_id}.{pipeline_type}.{step}.{sequence}
"""

import pytest

from checkout_integrity.exceptions import EventIdFormatError, ValidationError
from checkout_integrity.pipeline.constants import PipelineType
from checkout_integrity.pipeline.event_id import (
    ParsedEventId,
    decode_event_id,
    encode_event_id,
    is_valid_event_id,
)
from checkout_integrity.pipeline.events import PipelineStep


def test_encode_basic_coordinate():
    assert encode_event_id("chk_001", "checkout_physical", "buyer_validated") == \
        "chk_001.checkout_physical.buyer_validated.0"


def test_encode_accepts_enums():
    event_id = encode_event_id(
        "chk_001", PipelineType.CHECKOUT_DIGITAL, PipelineStep.PAYMENT_CONFIRMED, 3
    )
    assert event_id == "chk_001.checkout_digital.payment_confirmed.3"


@pytest.mark.parametrize("coordinate", [
    ("chk_001", "checkout_physical", "buyer_validated", 0),
    ("A-b_9", "checkout_subscription", "webhook_verified", 99),
    ("chk_002", "checkout_subscription>fulfillment", "payment_confirmed", 1),
    ("x" * 128, "checkout_digital", "fraud_check", 42),
])
def test_decode_inverts_encode(coordinate):
    assert decode_event_id(encode_event_id(*coordinate)) == ParsedEventId(*coordinate)


@pytest.mark.parametrize("session_id", ["", "has.dot", "has space", "x" * 129, "émoji", "chk_1\n"])
def test_encode_rejects_bad_session_id(session_id):
    with pytest.raises(EventIdFormatError):
        encode_event_id(session_id, "checkout_physical", "buyer_validated")


@pytest.mark.parametrize("pipeline_type,step", [
    ("Checkout", "buyer_validated"),
    ("checkout_physical", "Buyer"),
    ("checkout.physical", "buyer_validated"),
    ("checkout_physical", "step>nested"),
    ("checkout_physical\n", "buyer_validated"),
    ("checkout_physical", "buyer_validated\n"),
])
def test_encode_rejects_bad_segments(pipeline_type, step):
    with pytest.raises(EventIdFormatError):
        encode_event_id("chk_001", pipeline_type, step)


@pytest.mark.parametrize("sequence", [-1, 100, 1.5, True])
def test_encode_rejects_bad_sequence(sequence):
    with pytest.raises(EventIdFormatError):
        encode_event_id("chk_001", "checkout_physical", "buyer_validated", sequence)


@pytest.mark.parametrize("event_id", [
    "chk_001.checkout_physical.buyer_validated",
    "chk_001.checkout_physical.buyer_validated.0.1",
    "chk_001.checkout_physical.buyer_validated.x",
    "chk_001.checkout_physical.buyer_validated.-1",
    "chk_001.checkout_physical.buyer_validated.100",
    "",
])
def test_decode_rejects_malformed_ids(event_id):
    with pytest.raises(EventIdFormatError):
        decode_event_id(event_id)
    assert not is_valid_event_id(event_id)


def test_format_error_is_a_validation_error():
    with pytest.raises(ValidationError) as exc_info:
        decode_event_id("not-an-id")

    assert exc_info.value.error_code == "event_id_format"
    assert isinstance(exc_info.value, ValueError)
