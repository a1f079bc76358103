"""
Pipeline definitions - which steps are required vs optional per pipeline type.

Definitions are static. They are only used to evaluate validity of an event
log; nothing mutates them at runtime.
"""

from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import PIPELINE_SEGMENT_PATTERN, PipelineType
from .events import PipelineStep


class PipelineDefinition(BaseModel):
    """Static registry entry for one pipeline type."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    required_steps: Tuple[PipelineStep, ...] = Field(default_factory=tuple)
    optional_steps: Tuple[PipelineStep, ...] = Field(default_factory=tuple)

    @field_validator("type", mode="before")
    @classmethod
    def check_type(cls, v):
        if isinstance(v, PipelineType):
            v = v.value
        if not isinstance(v, str) or not PIPELINE_SEGMENT_PATTERN.fullmatch(v):
            raise ValueError("Pipeline type must match [a-z_]+")
        return v

    @property
    def steps_expected(self) -> int:
        return len(self.required_steps) + len(self.optional_steps)


PIPELINE_CHECKOUT_PHYSICAL = PipelineDefinition(
    name="Physical Product Checkout",
    type=PipelineType.CHECKOUT_PHYSICAL,
    required_steps=(
        PipelineStep.BUYER_VALIDATED,
        PipelineStep.ADDRESS_VALIDATED,
        PipelineStep.PAYMENT_INITIATED,
        PipelineStep.PAYMENT_CONFIRMED,
        PipelineStep.FULFILLMENT_DELEGATED,
        PipelineStep.CHECKOUT_COMPLETED,
    ),
    optional_steps=(
        PipelineStep.WEBHOOK_RECEIVED,
        PipelineStep.WEBHOOK_VERIFIED,
    ),
)

PIPELINE_CHECKOUT_DIGITAL = PipelineDefinition(
    name="Digital Product Checkout",
    type=PipelineType.CHECKOUT_DIGITAL,
    required_steps=(
        PipelineStep.BUYER_VALIDATED,
        PipelineStep.PAYMENT_INITIATED,
        PipelineStep.PAYMENT_CONFIRMED,
        PipelineStep.CHECKOUT_COMPLETED,
    ),
    optional_steps=(
        PipelineStep.WEBHOOK_RECEIVED,
        PipelineStep.WEBHOOK_VERIFIED,
        PipelineStep.FULFILLMENT_DELEGATED,
    ),
)

PIPELINE_CHECKOUT_SUBSCRIPTION = PipelineDefinition(
    name="Subscription Checkout",
    type=PipelineType.CHECKOUT_SUBSCRIPTION,
    required_steps=(
        PipelineStep.BUYER_VALIDATED,
        PipelineStep.PAYMENT_INITIATED,
        PipelineStep.PAYMENT_CONFIRMED,
        PipelineStep.WEBHOOK_RECEIVED,
        PipelineStep.WEBHOOK_VERIFIED,
        PipelineStep.CHECKOUT_COMPLETED,
    ),
    optional_steps=(
        PipelineStep.FULFILLMENT_DELEGATED,
    ),
)


def _with_fraud_check(base: PipelineDefinition, pipeline_type: PipelineType) -> PipelineDefinition:
    """Antifraud variant: the base pipeline with a mandatory fraud_check after buyer validation."""
    required = list(base.required_steps)
    required.insert(required.index(PipelineStep.BUYER_VALIDATED) + 1, PipelineStep.FRAUD_CHECK)
    return PipelineDefinition(
        name=f"{base.name} (Antifraud)",
        type=pipeline_type,
        required_steps=tuple(required),
        optional_steps=base.optional_steps,
    )


PIPELINE_CHECKOUT_PHYSICAL_ANTIFRAUD = _with_fraud_check(
    PIPELINE_CHECKOUT_PHYSICAL, PipelineType.CHECKOUT_PHYSICAL_ANTIFRAUD
)
PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD = _with_fraud_check(
    PIPELINE_CHECKOUT_DIGITAL, PipelineType.CHECKOUT_DIGITAL_ANTIFRAUD
)
PIPELINE_CHECKOUT_SUBSCRIPTION_ANTIFRAUD = _with_fraud_check(
    PIPELINE_CHECKOUT_SUBSCRIPTION, PipelineType.CHECKOUT_SUBSCRIPTION_ANTIFRAUD
)

PIPELINE_DEFINITIONS: Dict[str, PipelineDefinition] = {
    d.type: d
    for d in (
        PIPELINE_CHECKOUT_PHYSICAL,
        PIPELINE_CHECKOUT_DIGITAL,
        PIPELINE_CHECKOUT_SUBSCRIPTION,
        PIPELINE_CHECKOUT_PHYSICAL_ANTIFRAUD,
        PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD,
        PIPELINE_CHECKOUT_SUBSCRIPTION_ANTIFRAUD,
    )
}


def get_pipeline_definition(pipeline_type: str) -> Optional[PipelineDefinition]:
    if isinstance(pipeline_type, PipelineType):
        pipeline_type = pipeline_type.value
    return PIPELINE_DEFINITIONS.get(pipeline_type)
