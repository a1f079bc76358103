"""Redis-backed storage for events, checksum snapshots and velocity windows."""

from .client import create_redis_client
from .pipeline_storage import RedisChecksumRegistryStorage, RedisPipelineStorage
from .velocity_tracker import RedisVelocityStorage

__all__ = [
    "RedisChecksumRegistryStorage",
    "RedisPipelineStorage",
    "RedisVelocityStorage",
    "create_redis_client",
]
