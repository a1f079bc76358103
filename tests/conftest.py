"""
Pytest configuration and fixtures for checkout integrity tests.
"""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import pytest_asyncio

from checkout_integrity.config import Settings
from checkout_integrity.fraud.services.velocity_store import InMemoryVelocityStorage
from checkout_integrity.pipeline.checksum import compute_data_checksum
from checkout_integrity.pipeline.events import create_pipeline_event
from checkout_integrity.pipeline.tracker import PipelineTracker

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
BASE_TIME_MS = int(BASE_TIME.timestamp() * 1000)


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = BASE_TIME_MS):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def make_event():
    """
    Factory for valid pipeline events.

    Checksums are derived from the given payload names so that two events
    with the same payload share a checksum.
    """
    def _make_event(
        step,
        status="success",
        session_id="chk_001",
        pipeline_type="checkout_digital",
        sequence=0,
        offset_ms=0,
        input_payload=None,
        output_payload=None,
        **kwargs,
    ):
        return create_pipeline_event(
            session_id=session_id,
            pipeline_type=pipeline_type,
            step=step,
            status=status,
            sequence=sequence,
            input_checksum=compute_data_checksum(input_payload) if input_payload is not None else None,
            output_checksum=compute_data_checksum(output_payload) if output_payload is not None else None,
            timestamp=BASE_TIME + timedelta(milliseconds=offset_ms),
            **kwargs,
        )

    return _make_event


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def velocity_store(clock):
    """15-minute in-memory velocity store on a controllable clock."""
    return InMemoryVelocityStorage(window_ms=15 * 60 * 1000, clock=clock)


@pytest.fixture
def tracker():
    return PipelineTracker()


@pytest.fixture
def test_settings():
    """Settings independent of the environment and any .env file."""
    return Settings(_env_file=None, app_env="test", log_level="DEBUG")


@pytest_asyncio.fixture
async def redis_client():
    """In-process Redis for backend tests."""
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client

    await client.flushall()
    await client.aclose()


@pytest.fixture
def base_time():
    return BASE_TIME
