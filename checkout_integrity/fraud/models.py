"""
Data models for the antifraud engine.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from ..exceptions import ValidationError
from ..pipeline.events import PipelineEvent
from ..utils.clock import parse_utc, to_iso

MAX_SIGNAL_WEIGHT = 5.0


class RiskDecision(str, Enum):
    """Risk decision types."""
    ALLOW = "allow"
    REVIEW = "review"
    BLOCK = "block"


class KeyType(str, Enum):
    """Identity keys tracked by the velocity store."""
    EMAIL = "email"
    IP = "ip"
    DEVICE = "device"


class RiskSignal(BaseModel):
    """
    One scored piece of evidence.

    `name` and `description` are accepted as alternate spellings of
    `signal` and `reason`.
    """

    model_config = ConfigDict(frozen=True)

    signal: str = Field(min_length=1)
    score: float = Field(ge=0, le=100)
    reason: str = Field(min_length=1)
    weight: float = Field(default=1.0, ge=0, le=MAX_SIGNAL_WEIGHT)
    detected_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def accept_aliases(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("signal") and data.get("name"):
                data["signal"] = data["name"]
            if not data.get("reason") and data.get("description"):
                data["reason"] = data["description"]
            data.pop("name", None)
            data.pop("description", None)
        return data

    @field_validator("detected_at", mode="before")
    @classmethod
    def ensure_utc(cls, v):
        return None if v is None else parse_utc(v)

    @field_serializer("detected_at")
    def serialize_detected_at(self, v: Optional[datetime]) -> Optional[str]:
        return to_iso(v) if v is not None else None


class RiskAssessment(BaseModel):
    """Complete risk assessment for a checkout session."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1)
    total_score: int = Field(ge=0, le=100)
    decision: RiskDecision
    signals: Tuple[RiskSignal, ...] = ()
    chain_hash: Optional[str] = None
    assessed_at: datetime

    @field_validator("assessed_at", mode="before")
    @classmethod
    def ensure_utc(cls, v):
        return parse_utc(v)

    @field_serializer("assessed_at")
    def serialize_assessed_at(self, v: datetime) -> str:
        return to_iso(v)


class DeviceFingerprint(BaseModel):
    """Client-side device fingerprint, as supplied by the caller."""

    model_config = ConfigDict(frozen=True)

    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    language: Optional[str] = None
    timezone_offset: Optional[int] = None
    timezone: Optional[str] = None
    platform: Optional[str] = None
    hardware_concurrency: Optional[int] = None
    device_memory: Optional[float] = None
    max_touch_points: Optional[int] = None
    webgl_renderer: Optional[str] = None
    canvas_hash: Optional[str] = None
    cookies_enabled: Optional[bool] = None
    do_not_track: Optional[bool] = None
    color_depth: Optional[int] = None
    plugin_count: Optional[int] = None


class VelocityRecord(BaseModel):
    """Live window view of one (key_type, key) bucket."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    key_type: KeyType
    session_ids: Tuple[str, ...]
    window_start: datetime
    window_end: datetime
    count: int = Field(ge=0)

    @field_serializer("window_start", "window_end")
    def serialize_window(self, v: datetime) -> str:
        return to_iso(v)


class FraudCheckMetadata(BaseModel):
    """Metadata carried by a fraud_check pipeline event."""

    model_config = ConfigDict(frozen=True)

    assessment: RiskAssessment
    device_fingerprint: Optional[DeviceFingerprint] = None
    cached: bool = False


class AssessmentInput(BaseModel):
    """Everything the engine knows about a session at assessment time."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1)
    events: Tuple[PipelineEvent, ...] = ()
    email: Optional[str] = None
    ip: Optional[str] = None
    device_hash: Optional[str] = None
    device_fingerprint: Optional[DeviceFingerprint] = None
    billing_country: Optional[str] = None
    ip_country: Optional[str] = None
    previous_chain_hash: Optional[str] = None
    current_chain_hash: Optional[str] = None
    custom_signals: Tuple[RiskSignal, ...] = ()


# ============================================================================
# TUNABLES
# ============================================================================


class SignalWeights(BaseModel):
    """
    Weight multiplier per signal name.

    Unknown signal names may be added as extra fields; anything not listed
    weighs 1.0.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    velocity_email: float = 1.0
    velocity_ip: float = 0.8
    velocity_device: float = 0.9
    timing_too_fast: float = 1.2
    timing_too_slow: float = 0.6
    geo_mismatch: float = 1.0
    chain_hash_mutation: float = 1.5
    input_mutation: float = 1.0
    device_anomaly: float = 0.7
    form_pattern_anomaly: float = 0.5

    @model_validator(mode="after")
    def validate_weights(self) -> "SignalWeights":
        for name, value in self.model_dump().items():
            if not isinstance(value, (int, float)) or not 0 <= value <= MAX_SIGNAL_WEIGHT:
                raise ValueError(f"Weight for {name} must be between 0 and {MAX_SIGNAL_WEIGHT}")
        return self

    def weight_for(self, signal: str) -> float:
        return float(self.model_dump().get(signal, 1.0))


DEFAULT_SIGNAL_WEIGHTS = SignalWeights()


class RiskThresholds(BaseModel):
    """Score thresholds for decisions."""

    model_config = ConfigDict(frozen=True)

    allow_threshold: int = Field(default=30, ge=0, le=100)
    block_threshold: int = Field(default=70, ge=0, le=100)

    @model_validator(mode="after")
    def check_order(self) -> "RiskThresholds":
        if self.allow_threshold >= self.block_threshold:
            raise ValueError("allow_threshold must be below block_threshold")
        return self


class VelocityLimits(BaseModel):
    """Sliding window and per-key-type flagging thresholds."""

    model_config = ConfigDict(frozen=True)

    window_ms: int = Field(default=15 * 60 * 1000, gt=0)
    max_sessions_per_email: int = Field(default=5, ge=0)
    max_sessions_per_ip: int = Field(default=10, ge=0)
    max_sessions_per_device: int = Field(default=8, ge=0)

    def threshold_for(self, key_type: KeyType) -> int:
        key_type = KeyType(key_type)
        if key_type == KeyType.EMAIL:
            return self.max_sessions_per_email
        if key_type == KeyType.IP:
            return self.max_sessions_per_ip
        return self.max_sessions_per_device


class TimingThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    too_fast_ms: int = Field(default=3000, gt=0)
    too_slow_ms: int = Field(default=30 * 60 * 1000, gt=0)


def create_risk_signal(
    signal: str,
    score: float,
    reason: str,
    weight: Optional[float] = None,
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
    metadata: Optional[Dict[str, Any]] = None,
    detected_at: Optional[datetime] = None,
) -> RiskSignal:
    """
    Build a RiskSignal, taking its weight from the weight table unless given.

    Raises:
        ValidationError: score or weight out of range, empty name or reason
    """
    try:
        return RiskSignal(
            signal=signal,
            score=score,
            reason=reason,
            weight=weights.weight_for(signal) if weight is None else weight,
            detected_at=detected_at,
            metadata=metadata,
        )
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "RiskSignal") from e
