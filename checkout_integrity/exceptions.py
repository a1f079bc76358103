"""
Exception classes for the checkout integrity layer.

Taxonomy:
1. ValidationError  - malformed events, ids, signals. Always surfaced to the
   caller; an invalid event must never reach storage or it corrupts the chain.
2. StorageError     - backend I/O failure. Retryable, no automatic retry here.
3. ComputationError - should not happen for well-typed input. Fatal.
"""

from typing import Any, Dict, Optional


class CheckoutIntegrityError(Exception):
    """
    Base exception for all checkout integrity errors.

    Every exception carries:
    - Error code (for client handling)
    - Retryable flag (storage failures only)
    - Free-form metadata for logging
    """

    def __init__(
        self,
        message: str,
        error_code: str = "checkout_integrity_error",
        retryable: bool = False,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.retryable = retryable
        self.metadata = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
                "retryable": self.retryable,
            }
        }


class ValidationError(CheckoutIntegrityError, ValueError):
    """Input rejected at a construction boundary."""

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs: Any):
        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", "validation_error"),
            retryable=False,
            **kwargs,
        )
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: Exception, model: str) -> "ValidationError":
        """Wrap a pydantic ValidationError raised while building `model`."""
        errors = exc.errors() if hasattr(exc, "errors") else []
        fields = sorted({".".join(str(p) for p in err.get("loc", ())) for err in errors})
        return cls(
            f"Invalid {model}: {', '.join(f for f in fields if f) or str(exc)}",
            errors=errors,
            model=model,
        )


class EventIdFormatError(ValidationError):
    """Composite event id does not match {session}.{pipeline}.{step}.{sequence}."""

    def __init__(self, event_id: str, reason: str):
        super().__init__(
            f"Malformed event id {event_id!r}: {reason}",
            error_code="event_id_format",
            event_id=event_id,
        )


class StorageError(CheckoutIntegrityError):
    """
    Storage backend failed.

    Callers should treat this as a transient I/O error and may retry the
    whole operation. Nothing is partially applied within a single append.
    """

    def __init__(self, message: str, operation: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="storage_unavailable",
            retryable=True,
            operation=operation,
            **kwargs,
        )
        self.operation = operation


class ComputationError(CheckoutIntegrityError):
    """Internal state that should be impossible for well-formed input."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="computation_error",
            retryable=False,
            **kwargs,
        )
