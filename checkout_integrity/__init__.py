"""
Checkout Integrity
Tamper-evident event tracking and real-time fraud scoring for multi-step checkout pipelines.
"""

from .config import Settings, get_settings
from .exceptions import (
    CheckoutIntegrityError,
    ComputationError,
    EventIdFormatError,
    StorageError,
    ValidationError,
)
from .service import CheckoutIntegrityService, FraudCheckResult, create_service

__version__ = "0.1.0"

__all__ = [
    "CheckoutIntegrityError",
    "CheckoutIntegrityService",
    "ComputationError",
    "EventIdFormatError",
    "FraudCheckResult",
    "Settings",
    "StorageError",
    "ValidationError",
    "create_service",
    "get_settings",
]
