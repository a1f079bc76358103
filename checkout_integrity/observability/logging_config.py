"""
Structured logging configuration.

structlog builds the event dict; the stdlib root logger renders it as JSON
through python-json-logger, so library logs and our own logs share one
format:

    {"@timestamp": "...", "level": "info", "logger": "checkout_integrity.pipeline.tracker",
     "message": "tracker.snapshot", "session_id": "chk_001", "chain_hash": "9f2c...", ...}

Buyer identifiers (email, IP, device hash) are masked before rendering and
secret-like keys are redacted outright.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from pythonjsonlogger.json import JsonFormatter

from ..config import Settings, get_settings

PARTIAL_MASK_KEYS = ("email", "ip", "device_hash")
REDACT_KEY_MARKERS = ("password", "secret", "token", "api_key", "credential")


def _mask(value: Any) -> str:
    """Keep just enough to correlate: the last 4 characters."""
    text = str(value)
    if "@" in text:
        local, _, domain = text.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(text) > 4:
        return f"***{text[-4:]}"
    return "***REDACTED***"


def scrub_sensitive_data(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor masking buyer identifiers and secrets."""
    for key in list(event_dict):
        lowered = key.lower()
        if any(marker in lowered for marker in REDACT_KEY_MARKERS):
            event_dict[key] = "***REDACTED***"
        elif lowered in PARTIAL_MASK_KEYS and event_dict[key] is not None:
            event_dict[key] = _mask(event_dict[key])
    return event_dict


def _app_context(settings: Settings):
    def add_app_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict["app_name"] = settings.app_name
        event_dict["app_env"] = settings.app_env
        return event_dict

    return add_app_context


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structured JSON logging.

    Safe to call more than once; existing root handlers are replaced.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _app_context(settings),
            scrub_sensitive_data,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(JsonFormatter(
        "%(asctime)s %(name)s %(message)s",
        rename_fields={"asctime": "@timestamp", "name": "logger_name"},
    ))
    root_logger.addHandler(json_handler)

    logging.getLogger("redis").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )


def get_logger(name: str, **context: Any) -> Any:
    """
    Structured logger with pre-bound context.

        session_logger = get_logger(__name__, session_id="chk_001")
        session_logger.info("checkout.started")
    """
    return structlog.get_logger(name).bind(**context)
