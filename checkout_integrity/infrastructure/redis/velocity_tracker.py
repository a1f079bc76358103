"""
Redis-based velocity storage for fraud detection.

Each (key_type, key) bucket is a list of JSON observations
{"session_id": ..., "timestamp_ms": ...}. Updates WATCH the bucket, read it,
drop expired observations, and rewrite it in one MULTI/EXEC with a TTL equal
to the window, so idle buckets expire on their own and prune() has nothing
to do. A concurrent write from any process aborts the EXEC and the update is
retried against the new contents.
"""

import json
from typing import List, Optional, Tuple, Union

import structlog
from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError, WatchError

from ...exceptions import StorageError
from ...fraud.models import KeyType, VelocityRecord
from ...fraud.services.velocity_store import (
    DEFAULT_WINDOW_MS,
    Clock,
    Observation,
    active_observations,
    build_velocity_record,
)
from ...utils.clock import now_ms
from .client import KEY_PREFIX

logger = structlog.get_logger()

MAX_WATCH_RETRIES = 10


class RedisVelocityStorage:
    """
    Persistent velocity storage.

    Same-key updates are serialized by optimistic locking on the bucket, which
    holds across every process sharing the Redis instance.
    """

    def __init__(
        self,
        redis_client: Redis,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Clock = now_ms,
        prefix: str = f"{KEY_PREFIX}:antifraud:velocity",
        max_retries: int = MAX_WATCH_RETRIES,
    ):
        self.redis = redis_client
        self.window_ms = window_ms
        self.clock = clock
        self.prefix = prefix
        self.max_retries = max_retries

    def _key(self, key: str, key_type: KeyType) -> str:
        return f"{self.prefix}:{key_type.value}:{key}"

    @staticmethod
    def _parse(raw_entries: List[str]) -> List[Observation]:
        parsed = []
        for raw in raw_entries:
            try:
                value = json.loads(raw)
                parsed.append((str(value["session_id"]), int(value["timestamp_ms"])))
            except (ValueError, KeyError, TypeError):
                logger.warning("velocity_store.malformed_entry", entry=raw)
        return parsed

    def _queue_rewrite(self, pipe: Pipeline, redis_key: str, observations: List[Observation]) -> None:
        pipe.multi()
        pipe.delete(redis_key)
        if observations:
            pipe.rpush(redis_key, *(
                json.dumps({"session_id": sid, "timestamp_ms": ts})
                for sid, ts in observations
            ))
            pipe.pexpire(redis_key, self.window_ms)

    async def _update(self, redis_key: str, session_id: Optional[str]) -> Tuple[List[Observation], int]:
        """
        Evict expired observations and, when session_id is given, add it.

        Returns (active observations, now). The rewrite is skipped when
        nothing changed.
        """
        for attempt in range(1, self.max_retries + 1):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(redis_key)
                    observations = self._parse(await pipe.lrange(redis_key, 0, -1))
                    now = self.clock()
                    active = active_observations(observations, now, self.window_ms)
                    if session_id is not None and all(sid != session_id for sid, _ in active):
                        active.append((session_id, now))
                    if session_id is None and len(active) == len(observations):
                        return active, now
                    self._queue_rewrite(pipe, redis_key, active)
                    await pipe.execute()
                    return active, now
                except WatchError:
                    logger.debug("velocity_store.watch_conflict", key=redis_key, attempt=attempt)

        raise WatchError(f"{redis_key} kept changing after {self.max_retries} attempts")

    async def record(self, key: str, key_type: Union[KeyType, str], session_id: str) -> None:
        key_type = KeyType(key_type)
        try:
            await self._update(self._key(key, key_type), session_id)
        except RedisError as e:
            raise StorageError(
                f"Velocity record failed for {key_type.value}: {e}",
                operation="velocity.record",
            ) from e

    async def get(self, key: str, key_type: Union[KeyType, str]) -> Optional[VelocityRecord]:
        key_type = KeyType(key_type)
        try:
            active, now = await self._update(self._key(key, key_type), None)
        except RedisError as e:
            raise StorageError(
                f"Velocity lookup failed for {key_type.value}: {e}",
                operation="velocity.get",
            ) from e

        return build_velocity_record(key, key_type, active, now)

    async def prune(self) -> int:
        """Expired buckets go away through their TTL."""
        return 0
