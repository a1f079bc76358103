"""
Redis storage for pipeline events and checksum registry entries.

Layout (prefix "checkout_integrity:pipeline"):
    {prefix}:events:{session_id}      list, one JSON event per element (RPUSH)
    {prefix}:sessions                 set of session ids with events
    {prefix}:registry:{session_id}    list, newest entry first (LPUSH)
    {prefix}:registry_sessions        set of session ids with snapshots

Each store is one MULTI/EXEC, so an event is either fully recorded or not
at all. A failed call may be retried (at-least-once).
"""

from typing import List, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ...exceptions import StorageError, ValidationError
from ...pipeline.events import PipelineEvent, parse_pipeline_event
from ...pipeline.registry import ChecksumRegistryEntry, parse_registry_entry
from .client import KEY_PREFIX

logger = structlog.get_logger()

DEFAULT_PREFIX = f"{KEY_PREFIX}:pipeline"


class RedisPipelineStorage:
    """Durable event storage; implements PipelineStorage."""

    def __init__(self, redis_client: Redis, prefix: str = DEFAULT_PREFIX):
        self.redis = redis_client
        self.prefix = prefix
        self.sessions_key = f"{prefix}:sessions"

    def _events_key(self, session_id: str) -> str:
        return f"{self.prefix}:events:{session_id}"

    async def store(self, event: PipelineEvent) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.rpush(self._events_key(event.session_id), event.model_dump_json())
                pipe.sadd(self.sessions_key, event.session_id)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(
                f"Failed to store event {event.id}: {e}",
                operation="pipeline.store",
                event_id=event.id,
            ) from e

    async def list_by_session(self, session_id: str) -> List[PipelineEvent]:
        try:
            raw_events = await self.redis.lrange(self._events_key(session_id), 0, -1)
        except RedisError as e:
            raise StorageError(
                f"Failed to read events for {session_id}: {e}",
                operation="pipeline.list_by_session",
            ) from e

        events = []
        for raw in raw_events:
            try:
                events.append(parse_pipeline_event(raw))
            except ValidationError as e:
                logger.warning(
                    "pipeline_storage.malformed_event",
                    session_id=session_id,
                    error=e.message,
                )
        return events

    async def list_session_ids(self) -> List[str]:
        try:
            return sorted(await self.redis.smembers(self.sessions_key))
        except RedisError as e:
            raise StorageError(
                f"Failed to list sessions: {e}",
                operation="pipeline.list_session_ids",
            ) from e

    async def clear(self) -> None:
        try:
            session_ids = await self.redis.smembers(self.sessions_key)
            keys = [self._events_key(sid) for sid in session_ids]
            await self.redis.delete(self.sessions_key, *keys)
        except RedisError as e:
            raise StorageError(f"Failed to clear events: {e}", operation="pipeline.clear") from e


class RedisChecksumRegistryStorage:
    """Durable registry storage; implements ChecksumRegistryStorage."""

    def __init__(self, redis_client: Redis, prefix: str = DEFAULT_PREFIX):
        self.redis = redis_client
        self.prefix = prefix
        self.sessions_key = f"{prefix}:registry_sessions"

    def _registry_key(self, session_id: str) -> str:
        return f"{self.prefix}:registry:{session_id}"

    def _parse(self, raw: str, session_id: str) -> Optional[ChecksumRegistryEntry]:
        try:
            return parse_registry_entry(raw)
        except ValidationError as e:
            logger.warning(
                "registry_storage.malformed_entry",
                session_id=session_id,
                error=e.message,
            )
            return None

    async def store(self, entry: ChecksumRegistryEntry) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.lpush(self._registry_key(entry.session_id), entry.model_dump_json())
                pipe.sadd(self.sessions_key, entry.session_id)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(
                f"Failed to store registry entry {entry.id}: {e}",
                operation="registry.store",
                entry_id=entry.id,
            ) from e

    async def list_by_session(self, session_id: str) -> List[ChecksumRegistryEntry]:
        """Newest first; same-millisecond entries keep reverse insertion order."""
        try:
            raw_entries = await self.redis.lrange(self._registry_key(session_id), 0, -1)
        except RedisError as e:
            raise StorageError(
                f"Failed to read registry for {session_id}: {e}",
                operation="registry.list_by_session",
            ) from e

        entries = [e for e in (self._parse(raw, session_id) for raw in raw_entries) if e]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    async def latest(self, session_id: str) -> Optional[ChecksumRegistryEntry]:
        entries = await self.list_by_session(session_id)
        return entries[0] if entries else None

    async def clear(self) -> None:
        try:
            session_ids = await self.redis.smembers(self.sessions_key)
            keys = [self._registry_key(sid) for sid in session_ids]
            await self.redis.delete(self.sessions_key, *keys)
        except RedisError as e:
            raise StorageError(f"Failed to clear registry: {e}", operation="registry.clear") from e
