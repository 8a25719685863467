"""Integration test fixtures using Docker.

Provides a containerized Redis so elections run against a real server.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
from redis.asyncio import Redis

from raceblock.election import RaceBlock
from raceblock.observers import ElectionEvent
from raceblock.settings import ElectionConfig
from raceblock.store.redis import RedisStore
from tests.integration.docker_utils import DockerService, get_docker_client, run_container


@pytest.fixture(scope="session")
def docker_client():
    """Create a Docker client or skip if Docker is unavailable."""
    try:
        client = get_docker_client()
        client.ping()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def redis_container(docker_client) -> Iterator[DockerService]:
    """Start Redis container for the test session."""
    ports = {"6379/tcp": None}
    with run_container(docker_client, "redis:7-alpine", ports=ports) as redis:
        yield redis


@pytest.fixture(scope="session")
def redis_url(redis_container: DockerService) -> str:
    """Get the Redis URL for the test container."""
    return redis_container.url("redis", 6379, "/0")


@pytest_asyncio.fixture
async def redis_client(redis_url: str) -> AsyncIterator[Redis]:
    """Create a Redis client for tests."""
    client = Redis.from_url(redis_url, decode_responses=True)
    await _wait_for_redis(client)
    yield client
    await client.flushdb()  # Clean up after each test
    await client.aclose()


@pytest.fixture
def store(redis_client: Redis) -> RedisStore:
    return RedisStore(client=redis_client)


@pytest.fixture
def events() -> list[ElectionEvent]:
    return []


@pytest.fixture
def block(store: RedisStore, events: list[ElectionEvent]) -> RaceBlock:
    """RaceBlock with a short settling wait against the container."""
    return RaceBlock(
        store=store,
        config=ElectionConfig(sleep_delay=0.2),
        observer=events.append,
    )


async def _wait_for_redis(client: Redis, timeout: float = 30.0) -> None:
    """Wait for Redis to accept connections."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            await client.ping()
            return
        except Exception:
            if time.monotonic() >= deadline:
                raise
            await asyncio.sleep(0.5)
