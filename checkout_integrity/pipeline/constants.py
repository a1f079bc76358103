"""
Pipeline constants - the constraints every integration shares.

Changing any of these changes the persisted record format.
"""

import re
from enum import Enum

# Session IDs are URL-safe strings, max 128 chars
SESSION_ID_MAX_LENGTH = 128
SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

# All checksums are SHA-256 hex digests
CHECKSUM_LENGTH = 64
CHECKSUM_PATTERN = re.compile(r"^[a-f0-9]{64}$")

# Composite id separator, and the reserved delimiter for nested pipelines
# e.g. "chk_001.checkout_subscription>fulfillment.payment_confirmed.0"
EVENT_ID_SEPARATOR = "."
NESTED_DELIMITER = ">"

PIPELINE_SEGMENT_PATTERN = re.compile(r"^[a-z_]+(?:>[a-z_]+)*$")
STEP_SEGMENT_PATTERN = re.compile(r"^[a-z_]+$")

# Max retry/sequence number for a single step
MAX_SEQUENCE = 99


class PipelineType(str, Enum):
    """Built-in pipeline types. New types require a new definition."""
    CHECKOUT_PHYSICAL = "checkout_physical"
    CHECKOUT_DIGITAL = "checkout_digital"
    CHECKOUT_SUBSCRIPTION = "checkout_subscription"
    CHECKOUT_PHYSICAL_ANTIFRAUD = "checkout_physical_antifraud"
    CHECKOUT_DIGITAL_ANTIFRAUD = "checkout_digital_antifraud"
    CHECKOUT_SUBSCRIPTION_ANTIFRAUD = "checkout_subscription_antifraud"


def validate_session_id(value: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError("Session ID must be a non-empty string")
    if len(value) > SESSION_ID_MAX_LENGTH:
        raise ValueError(f"Session ID exceeds {SESSION_ID_MAX_LENGTH} characters")
    if not SESSION_ID_PATTERN.fullmatch(value):
        raise ValueError("Session ID must be URL-safe (alphanumeric, _, -)")
    return value


def validate_checksum(value: str) -> str:
    if not isinstance(value, str) or not CHECKSUM_PATTERN.fullmatch(value):
        raise ValueError("Must be a valid SHA-256 hex digest (64 lowercase hex chars)")
    return value
