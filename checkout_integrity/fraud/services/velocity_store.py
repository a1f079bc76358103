"""
Velocity store - distinct sessions per identity key inside a sliding window.

An observation made at t0 counts for reads at t < t0 + window and is gone
from t0 + window onward. Each session id is counted once per window.

Backends:
- InMemoryVelocityStorage: one ordered (session_id, timestamp) list per key
- RedisVelocityStorage: see infrastructure/redis/velocity_tracker.py
"""

import asyncio
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Protocol, Tuple, Union

import structlog

from ...utils.clock import from_epoch_ms, now_ms
from ..models import KeyType, VelocityRecord

logger = structlog.get_logger()

DEFAULT_WINDOW_MS = 15 * 60 * 1000

Clock = Callable[[], int]
Observation = Tuple[str, int]


class VelocityStorage(Protocol):
    """Interface for velocity storage."""

    async def record(self, key: str, key_type: Union[KeyType, str], session_id: str) -> None:
        """Add a session observation for the key (deduplicated within the window)."""
        ...

    async def get(self, key: str, key_type: Union[KeyType, str]) -> Optional[VelocityRecord]:
        """Live window view, or None when no observation remains."""
        ...

    async def prune(self) -> int:
        """Sweep expired observations; returns how many were removed."""
        ...


def active_observations(
    observations: List[Observation], now: int, window_ms: int
) -> List[Observation]:
    cutoff = now - window_ms
    return [(sid, ts) for sid, ts in observations if ts > cutoff]


def build_velocity_record(
    key: str, key_type: KeyType, observations: List[Observation], now: int
) -> Optional[VelocityRecord]:
    if not observations:
        return None
    return VelocityRecord(
        key=key,
        key_type=key_type,
        session_ids=tuple(sid for sid, _ in observations),
        window_start=from_epoch_ms(min(ts for _, ts in observations)),
        window_end=from_epoch_ms(now),
        count=len(observations),
    )


class InMemoryVelocityStorage:
    """
    Process-local velocity storage.

    `record` is a read-modify-write of one bucket and is serialized per key
    with an asyncio.Lock; different keys never wait on each other.
    """

    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS, clock: Clock = now_ms):
        self.window_ms = window_ms
        self.clock = clock
        self._buckets: Dict[Tuple[KeyType, str], List[Observation]] = {}
        self._locks: Dict[Tuple[KeyType, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def record(self, key: str, key_type: Union[KeyType, str], session_id: str) -> None:
        bucket_key = (KeyType(key_type), key)
        async with self._locks[bucket_key]:
            now = self.clock()
            active = active_observations(self._buckets.get(bucket_key, []), now, self.window_ms)
            if all(sid != session_id for sid, _ in active):
                active.append((session_id, now))
            self._buckets[bucket_key] = active

    async def get(self, key: str, key_type: Union[KeyType, str]) -> Optional[VelocityRecord]:
        key_type = KeyType(key_type)
        now = self.clock()
        active = active_observations(self._buckets.get((key_type, key), []), now, self.window_ms)
        return build_velocity_record(key, key_type, active, now)

    async def prune(self) -> int:
        now = self.clock()
        removed = 0
        for bucket_key in list(self._buckets):
            observations = self._buckets[bucket_key]
            active = active_observations(observations, now, self.window_ms)
            removed += len(observations) - len(active)
            if active:
                self._buckets[bucket_key] = active
            else:
                del self._buckets[bucket_key]

        for bucket_key, lock in list(self._locks.items()):
            if bucket_key not in self._buckets and not lock.locked():
                del self._locks[bucket_key]

        if removed:
            logger.info("velocity_store.pruned", removed=removed, buckets=len(self._buckets))
        return removed
