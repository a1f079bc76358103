"""
Pipeline events - immutable facts about checkout steps.

Every step in a checkout pipeline emits a PipelineEvent. Events are the
input of the chain hash, so an event that fails validation here must never
be stored.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from ..exceptions import EventIdFormatError, ValidationError
from ..utils.clock import parse_utc, to_iso, utc_now
from .constants import (
    MAX_SEQUENCE,
    PIPELINE_SEGMENT_PATTERN,
    validate_checksum,
    validate_session_id,
)
from .event_id import encode_event_id


class PipelineStep(str, Enum):
    """Closed set of steps a checkout pipeline can report."""
    BUYER_VALIDATED = "buyer_validated"
    ADDRESS_VALIDATED = "address_validated"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_CONFIRMED = "payment_confirmed"
    FULFILLMENT_DELEGATED = "fulfillment_delegated"
    WEBHOOK_RECEIVED = "webhook_received"
    WEBHOOK_VERIFIED = "webhook_verified"
    CHECKOUT_COMPLETED = "checkout_completed"
    CHECKOUT_FAILED = "checkout_failed"
    FRAUD_CHECK = "fraud_check"


class EventStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    SKIPPED = "skipped"


class PipelineEvent(BaseModel):
    """
    One step occurrence.

    The composite id is fully determined by (session_id, pipeline_type,
    step, sequence). It is derived when omitted and rejected when it
    disagrees with the other fields.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False, extra="forbid")

    id: str
    session_id: str
    pipeline_type: str = Field(min_length=1)
    step: PipelineStep
    sequence: int = Field(default=0, ge=0, le=MAX_SEQUENCE)
    status: EventStatus
    handler: Optional[str] = None
    input_checksum: Optional[str] = None
    output_checksum: Optional[str] = None
    duration_ms: Optional[float] = Field(default=None, ge=0)
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime

    @model_validator(mode="before")
    @classmethod
    def derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            try:
                data = dict(data)
                data["id"] = encode_event_id(
                    data["session_id"],
                    data["pipeline_type"],
                    data["step"],
                    data.get("sequence", 0),
                )
            except (KeyError, TypeError, EventIdFormatError):
                # Field-level validators report the precise problem
                data["id"] = ""
        return data

    @field_validator("session_id")
    @classmethod
    def check_session_id(cls, v: str) -> str:
        return validate_session_id(v)

    @field_validator("pipeline_type", mode="before")
    @classmethod
    def check_pipeline_type(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            v = v.value
        if not isinstance(v, str) or not PIPELINE_SEGMENT_PATTERN.fullmatch(v):
            raise ValueError("Pipeline type must match [a-z_]+")
        return v

    @field_validator("input_checksum", "output_checksum")
    @classmethod
    def check_checksum(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else validate_checksum(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def ensure_utc(cls, v: Union[str, datetime]) -> datetime:
        """Always UTC, always milliseconds, never naive."""
        return parse_utc(v)

    @model_validator(mode="after")
    def check_id_matches(self) -> "PipelineEvent":
        expected = encode_event_id(
            self.session_id, self.pipeline_type, self.step, self.sequence
        )
        if self.id != expected:
            raise ValueError(f"Event id {self.id!r} does not match its fields ({expected!r})")
        return self

    @field_serializer("timestamp")
    def serialize_timestamp(self, v: datetime) -> str:
        return to_iso(v)


def create_pipeline_event(
    session_id: str,
    pipeline_type: Union[str, Enum],
    step: Union[str, PipelineStep],
    status: Union[str, EventStatus],
    sequence: int = 0,
    handler: Optional[str] = None,
    input_checksum: Optional[str] = None,
    output_checksum: Optional[str] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    timestamp: Optional[Union[str, datetime]] = None,
) -> PipelineEvent:
    """
    Create a new PipelineEvent with composite ID and canonical timestamp.

    Raises:
        ValidationError: if any field is missing or out of range
    """
    return parse_pipeline_event({
        "session_id": session_id,
        "pipeline_type": pipeline_type,
        "step": step,
        "status": status,
        "sequence": sequence,
        "handler": handler,
        "input_checksum": input_checksum,
        "output_checksum": output_checksum,
        "duration_ms": duration_ms,
        "error": error,
        "metadata": metadata,
        "timestamp": timestamp if timestamp is not None else utc_now(),
    })


def parse_pipeline_event(data: Union[PipelineEvent, Dict[str, Any], str, bytes]) -> PipelineEvent:
    """Validate a model, dict or JSON document into a PipelineEvent."""
    try:
        if isinstance(data, PipelineEvent):
            return PipelineEvent.model_validate(data.model_dump())
        if isinstance(data, (str, bytes)):
            return PipelineEvent.model_validate_json(data)
        return PipelineEvent.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "PipelineEvent") from e
