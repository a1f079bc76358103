"""Handler health - aggregate a handler's events into status and latency metrics."""

import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, field_serializer

from ..utils.clock import to_iso, utc_now
from ..utils.rounding import round_half_up
from .events import EventStatus, PipelineEvent

RECENT_WINDOW = timedelta(hours=1)
HEALTHY_SUCCESS_RATE = 95
DEGRADED_SUCCESS_RATE = 50


class HandlerHealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class HandlerError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class HandlerHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    handler: str
    total_calls: int
    success_count: int
    failure_count: int
    success_rate: int
    avg_latency_ms: int
    p95_latency_ms: float
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_error: Optional[HandlerError] = None
    status: HandlerHealthStatus

    @field_serializer("last_success", "last_failure")
    def serialize_timestamps(self, v: Optional[datetime]) -> Optional[str]:
        return to_iso(v) if v is not None else None


def _percentile(values: List[float], percentile: float) -> float:
    """Nearest-rank percentile."""
    if not values:
        return 0
    ordered = sorted(values)
    index = math.ceil(percentile * len(ordered)) - 1
    return ordered[min(max(index, 0), len(ordered) - 1)]


def _last_error(failures: List[PipelineEvent]) -> Optional[HandlerError]:
    if not failures:
        return None
    latest = max(failures, key=lambda e: e.timestamp)
    metadata = latest.metadata or {}
    code = metadata.get("error_code") or metadata.get("code") or "unknown"
    message = latest.error or metadata.get("error_message") or "Unknown error"
    return HandlerError(code=str(code), message=str(message))


def _status(events: List[PipelineEvent], success_rate: int, now: datetime) -> HandlerHealthStatus:
    if not events:
        return HandlerHealthStatus.DOWN
    if not any(now - e.timestamp <= RECENT_WINDOW for e in events):
        return HandlerHealthStatus.DOWN
    if success_rate > HEALTHY_SUCCESS_RATE:
        return HandlerHealthStatus.HEALTHY
    if success_rate >= DEGRADED_SUCCESS_RATE:
        return HandlerHealthStatus.DEGRADED
    return HandlerHealthStatus.DOWN


def compute_handler_health(
    handler: str,
    events: Iterable[PipelineEvent],
    now: Optional[datetime] = None,
) -> HandlerHealth:
    """
    Health of one handler from the events it emitted.

    No calls at all, or none within the last hour, means the handler is
    down regardless of its historical success rate.
    """
    events = list(events)
    now = now or utc_now()

    successes = [e for e in events if e.status == EventStatus.SUCCESS]
    failures = [e for e in events if e.status == EventStatus.FAILURE]
    latencies = [e.duration_ms for e in events if e.duration_ms is not None]

    success_rate = round_half_up(len(successes) / len(events) * 100) if events else 0
    avg_latency = round_half_up(sum(latencies) / len(latencies)) if latencies else 0

    return HandlerHealth(
        handler=handler,
        total_calls=len(events),
        success_count=len(successes),
        failure_count=len(failures),
        success_rate=success_rate,
        avg_latency_ms=avg_latency,
        p95_latency_ms=_percentile(latencies, 0.95),
        last_success=max((e.timestamp for e in successes), default=None),
        last_failure=max((e.timestamp for e in failures), default=None),
        last_error=_last_error(failures),
        status=_status(events, success_rate, now),
    )
