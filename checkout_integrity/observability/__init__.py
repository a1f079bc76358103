"""Structured JSON logging for the checkout integrity layer."""

from .logging_config import get_logger, scrub_sensitive_data, setup_logging

__all__ = ["get_logger", "scrub_sensitive_data", "setup_logging"]
