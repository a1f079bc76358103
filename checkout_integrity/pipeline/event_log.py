"""
Event Log - append-only record of pipeline events per session.

The log is the only writer of pipeline events. It re-validates everything
it is given, so a malformed event is rejected before it can reach storage
and poison a chain hash.

Storage is pluggable:
- InMemoryPipelineStorage: tests and local development (process lifetime)
- RedisPipelineStorage: durable, see infrastructure/redis/pipeline_storage.py
"""

from typing import Any, Dict, List, Protocol, Union

import structlog

from .events import PipelineEvent, parse_pipeline_event

logger = structlog.get_logger()


class PipelineStorage(Protocol):
    """Interface for pipeline event storage."""

    async def store(self, event: PipelineEvent) -> None:
        """Append one event. Must be atomic per event."""
        ...

    async def list_by_session(self, session_id: str) -> List[PipelineEvent]:
        """All events of a session in insertion order."""
        ...

    async def list_session_ids(self) -> List[str]:
        ...

    async def clear(self) -> None:
        ...


class EventLog:
    """Validating gateway in front of a PipelineStorage."""

    def __init__(self, storage: PipelineStorage):
        self.storage = storage

    async def append(self, event: Union[PipelineEvent, Dict[str, Any]]) -> PipelineEvent:
        """
        Validate and store an event.

        Raises:
            ValidationError: event is malformed (nothing is stored)
            StorageError: backend failed
        """
        validated = parse_pipeline_event(event)
        await self.storage.store(validated)

        logger.info(
            "event_log.append",
            event_id=validated.id,
            session_id=validated.session_id,
            step=validated.step.value,
            status=validated.status.value,
        )
        return validated

    async def list_by_session(self, session_id: str) -> List[PipelineEvent]:
        return await self.storage.list_by_session(session_id)

    async def list_session_ids(self) -> List[str]:
        return await self.storage.list_session_ids()

    async def clear(self) -> None:
        await self.storage.clear()
        logger.info("event_log.cleared")


# ============================================================================
# IN-MEMORY IMPLEMENTATION (for testing and local development)
# ============================================================================


class InMemoryPipelineStorage:
    """Keeps events in a list per session for the lifetime of the process."""

    def __init__(self):
        self._events: Dict[str, List[PipelineEvent]] = {}

    async def store(self, event: PipelineEvent) -> None:
        self._events.setdefault(event.session_id, []).append(event)

    async def list_by_session(self, session_id: str) -> List[PipelineEvent]:
        return list(self._events.get(session_id, []))

    async def list_session_ids(self) -> List[str]:
        return list(self._events)

    async def clear(self) -> None:
        self._events.clear()
