"""
Traced step - run a checkout step and record its outcome as a PipelineEvent.

The wrapper is transparent: the step's return value and exceptions pass
through unchanged. Event emission is best effort and never changes the
step's outcome.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

import structlog
from pydantic import BaseModel

from .checksum import compute_data_checksum
from .event_log import EventLog
from .events import EventStatus, PipelineStep, create_pipeline_event

logger = structlog.get_logger()

T = TypeVar("T")

_NOT_GIVEN = object()


def _payload_checksum(data: Any) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return compute_data_checksum(data)


async def traced_step(
    event_log: EventLog,
    *,
    session_id: str,
    pipeline_type: Union[str, Enum],
    step: Union[str, PipelineStep],
    handler: str,
    operation: Callable[[], Awaitable[T]],
    input: Any = _NOT_GIVEN,
    sequence: int = 0,
    metadata: Optional[Dict[str, Any]] = None,
) -> T:
    """
    Await `operation()` and emit a success or failure event for it.

    Args:
        event_log: Where the event is appended
        operation: Zero-argument factory returning the step's awaitable
        input: Step input; when given, its checksum is recorded

    Returns:
        Whatever the operation returns
    """
    input_checksum = None if input is _NOT_GIVEN else _payload_checksum(input)
    start = time.perf_counter()

    try:
        output = await operation()
    except Exception as e:
        await _emit_safe(
            event_log,
            session_id=session_id,
            pipeline_type=pipeline_type,
            step=step,
            handler=handler,
            status=EventStatus.FAILURE,
            sequence=sequence,
            input_checksum=input_checksum,
            duration_ms=(time.perf_counter() - start) * 1000,
            error=str(e) or e.__class__.__name__,
            metadata=metadata,
        )
        raise

    await _emit_safe(
        event_log,
        session_id=session_id,
        pipeline_type=pipeline_type,
        step=step,
        handler=handler,
        status=EventStatus.SUCCESS,
        sequence=sequence,
        input_checksum=input_checksum,
        output_checksum=_payload_checksum(output),
        duration_ms=(time.perf_counter() - start) * 1000,
        metadata=metadata,
    )
    return output


async def _emit_safe(event_log: EventLog, **fields: Any) -> None:
    """Append the step event; failures are logged and dropped."""
    try:
        event = create_pipeline_event(**fields)
        await event_log.append(event)
    except Exception as e:
        logger.warning(
            "traced_step.emit_failed",
            session_id=fields.get("session_id"),
            step=str(getattr(fields.get("step"), "value", fields.get("step"))),
            error=str(e),
            exc_info=True,
        )
