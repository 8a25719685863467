"""Tests for the process-wide default RaceBlock."""

from __future__ import annotations

import asyncio
import threading

import pytest

import raceblock
from raceblock import runtime
from raceblock.observers import ElectionEvent, ElectionOutcome
from raceblock.settings import ConfigHandle, ElectionConfig
from raceblock.store.redis import RedisStore, StoreConnectionState
from tests.unit.fakes import InMemoryStore


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> InMemoryStore:
    """Install a fresh default instance backed by an in-memory store."""
    monkeypatch.setattr(runtime, "_race_block", None)
    monkeypatch.setattr(
        runtime, "_config_handle", ConfigHandle(ElectionConfig(sleep_delay=0.01))
    )
    store = InMemoryStore()
    runtime.configure(store=store)  # type: ignore[arg-type]
    return store


class TestConfig:
    """Tests for raceblock.config()."""

    def test_read_without_arguments(self, store: InMemoryStore) -> None:
        assert raceblock.config() == ElectionConfig(sleep_delay=0.01)

    def test_keyword_update(self, store: InMemoryStore) -> None:
        updated = raceblock.config(sleep_delay=1.5, expire=14, expiration_delay=4)

        assert raceblock.config() is updated
        assert (updated.sleep_delay, updated.expire, updated.expiration_delay) == (1.5, 14, 4)

    def test_mutator_update(self, store: InMemoryStore) -> None:
        raceblock.config(lambda c: setattr(c, "expire", 14))

        assert raceblock.config().expire == 14

    def test_reset_config(self, store: InMemoryStore) -> None:
        raceblock.config(expire=14)

        assert raceblock.reset_config().expire == 60

    def test_reconfigure_keeps_settings(self, store: InMemoryStore) -> None:
        raceblock.config(expire=14)

        raceblock.configure(store=InMemoryStore())  # type: ignore[arg-type]

        assert raceblock.config().expire == 14

    @pytest.mark.asyncio
    async def test_update_applies_to_next_election(self, store: InMemoryStore) -> None:
        """The default instance reads the shared handle on every election."""
        raceblock.config(expire=14, expiration_delay=4)

        await raceblock.start("report", lambda: None)

        assert [call[2] for call in store.calls_to("EXPIRE")] == [16, 14, 4]


class TestDefaultInstance:
    """Tests for the module-level election helpers."""

    @pytest.mark.asyncio
    async def test_start_and_reset(self, store: InMemoryStore) -> None:
        assert await raceblock.start("report", lambda: "done") == "done"
        assert await raceblock.start("report", lambda: "again") is None

        await raceblock.reset("report")

        assert await raceblock.start("report", lambda: "again") == "again"

    @pytest.mark.asyncio
    async def test_start_forwards_overrides(self, store: InMemoryStore) -> None:
        await raceblock.start("report", lambda: None, expiration_delay=9)

        assert await store.ttl(raceblock.key("report")) == 9
        assert raceblock.config().expiration_delay == 3

    @pytest.mark.asyncio
    async def test_decorator_uses_default_instance(self, store: InMemoryStore) -> None:
        @raceblock.race_block("digest")
        async def send_digest() -> str:
            return "sent"

        assert await send_digest() == "sent"
        assert raceblock.key("digest") in store.entries

    @pytest.mark.asyncio
    async def test_configure_observer(self, store: InMemoryStore) -> None:
        events: list[ElectionEvent] = []
        raceblock.configure(observer=events.append)

        await raceblock.start("report", lambda: None)

        assert [e.outcome for e in events] == [ElectionOutcome.RAN, ElectionOutcome.COMPLETED]
        assert raceblock.client() is store

    def test_reconfigure_keeps_observer(self, store: InMemoryStore) -> None:
        def observer(event: ElectionEvent) -> None:
            pass

        raceblock.configure(observer=observer)
        raceblock.configure(store=InMemoryStore())  # type: ignore[arg-type]

        assert raceblock.get_race_block().observer is observer

    def test_key(self) -> None:
        assert raceblock.key("report") == "race_block_report"

    @pytest.mark.asyncio
    async def test_connect(self, store: InMemoryStore) -> None:
        assert await raceblock.connect() is True

    @pytest.mark.asyncio
    async def test_shutdown_drops_instance(self, store: InMemoryStore) -> None:
        await raceblock.shutdown()

        assert store.state == StoreConnectionState.DISCONNECTED
        assert runtime._race_block is None
        # Next use builds a fresh instance against Redis
        assert isinstance(raceblock.client(), RedisStore)


class TestThreadedCallers:
    """Tests for sync callers, each driving its own event loop."""

    def test_five_threads_run_once(self, store: InMemoryStore) -> None:
        """Probabilistic: every thread writes its token within the settling wait."""
        raceblock.config(sleep_delay=0.3)
        counter = 0
        errors: list[BaseException] = []
        lock = threading.Lock()

        def work() -> None:
            nonlocal counter
            with lock:
                counter += 1

        def caller() -> None:
            try:
                asyncio.run(raceblock.start("job-x", work))
            except BaseException as e:
                errors.append(e)

        threads = [threading.Thread(target=caller) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert counter == 1

    def test_sequential_loops(self, store: InMemoryStore) -> None:
        """Each cron-style invocation runs its own loop."""
        results = [asyncio.run(raceblock.start(f"seq-{i}", lambda i=i: i)) for i in range(3)]

        assert results == [0, 1, 2]
