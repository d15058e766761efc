"""Blocking store client behaviour over the in-memory driver.

Covers the single-call operations, retry and timeout mapping, conditional
writes, the loop-thread deadlock guard, watches, and shutdown.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from lib_cluster_config.adapters.store.bridge import CoordinationClient
from lib_cluster_config.adapters.store.memory import InMemoryStoreDriver
from lib_cluster_config.application.retry import Backoff
from lib_cluster_config.domain.errors import NotFound, PreconditionFailed, StoreUnavailable
from lib_cluster_config.domain.events import CaughtUp, EventKind, WatchEvent

FAST = Backoff(base=0.001, max_sleep=0.01, jitter=0.0)


class HangingDriver(InMemoryStoreDriver):
    async def get(self, key):
        await asyncio.sleep(30)


class ReentrantDriver(InMemoryStoreDriver):
    client: CoordinationClient | None = None

    async def get(self, key):
        assert self.client is not None
        return self.client.get(key)


def test_put_get_delete_roundtrip(store_client: CoordinationClient) -> None:
    revision = store_client.put("/cfg/a", "1")
    assert store_client.get("/cfg/a") == (b"1", revision)
    deleted_at = store_client.delete("/cfg/a")
    assert deleted_at > revision
    with pytest.raises(NotFound):
        store_client.get("/cfg/a")
    with pytest.raises(NotFound):
        store_client.delete("/cfg/a")


def test_get_prefix_returns_values_and_revision(store_client: CoordinationClient) -> None:
    store_client.put("/cfg/a", b"1")
    store_client.put("/cfg/b", b"2")
    store_client.put("/other/c", b"3")
    values, revision = store_client.get_prefix("/cfg/")
    assert [value.key for value in values] == ["/cfg/a", "/cfg/b"]
    assert revision == 3


def test_conditional_put(store_client: CoordinationClient) -> None:
    first = store_client.put("/lock", b"owner-1", prev_revision=0)
    with pytest.raises(PreconditionFailed):
        store_client.put("/lock", b"owner-2", prev_revision=0)
    second = store_client.put("/lock", b"owner-2", prev_revision=first)
    assert store_client.get("/lock") == (b"owner-2", second)


def test_transient_failures_are_retried(store_client: CoordinationClient, memory_store: InMemoryStoreDriver) -> None:
    memory_store.set("/cfg/a", b"1")
    memory_store.fail_next(2)
    assert store_client.get("/cfg/a") == (b"1", 1)


def test_retries_are_bounded(store_client: CoordinationClient, memory_store: InMemoryStoreDriver) -> None:
    memory_store.fail_next(10)
    with pytest.raises(StoreUnavailable):
        store_client.get_prefix("/cfg/")


def test_conditional_put_is_not_retried(store_client: CoordinationClient, memory_store: InMemoryStoreDriver) -> None:
    memory_store.fail_next(1)
    with pytest.raises(StoreUnavailable):
        store_client.put("/lock", b"x", prev_revision=0)
    assert store_client.put("/lock", b"x", prev_revision=0) == 1


def test_timeout_becomes_store_unavailable() -> None:
    client = CoordinationClient(HangingDriver(), timeout=0.05, retries=0, backoff=FAST)
    try:
        started = time.monotonic()
        with pytest.raises(StoreUnavailable, match="timed out"):
            client.get("/slow")
        assert time.monotonic() - started < 5
    finally:
        client.close()


def test_blocking_call_from_loop_thread_is_refused() -> None:
    driver = ReentrantDriver()
    client = CoordinationClient(driver, timeout=1.0, retries=0, backoff=FAST)
    driver.client = client
    try:
        with pytest.raises(RuntimeError, match="deadlock"):
            client.get("/cfg/a")
    finally:
        client.close()


def test_watch_yields_marker_then_events(store_client: CoordinationClient, memory_store: InMemoryStoreDriver) -> None:
    with store_client.watch_prefix("/cfg/") as watch:
        assert isinstance(next(watch), CaughtUp)
        memory_store.set("/cfg/a", b"1")
        memory_store.set("/other/b", b"2")
        memory_store.remove("/cfg/a")
        first, second = next(watch), next(watch)
    assert first == WatchEvent.put("/cfg/a", b"1", 1)
    assert second.kind is EventKind.DELETE and second.revision == 3
    assert watch.cancelled


def test_watch_replays_from_start_revision(store_client: CoordinationClient, memory_store: InMemoryStoreDriver) -> None:
    for value in (b"1", b"2", b"3"):
        memory_store.set("/cfg/a", value)
    with store_client.watch_prefix("/cfg/", start_revision=2) as watch:
        marker = next(watch)
        replayed = [next(watch), next(watch)]
    assert marker == CaughtUp(2)
    assert [event.revision for event in replayed] == [2, 3]


def test_dropped_watch_raises_once(store_client: CoordinationClient, memory_store: InMemoryStoreDriver) -> None:
    watch = store_client.watch_prefix("/cfg/")
    next(watch)
    memory_store.disconnect_watchers("network partition")
    with pytest.raises(StoreUnavailable):
        next(watch)
    with pytest.raises(StopIteration):
        next(watch)
    watch.cancel()


def test_cancelled_watch_stops_iteration(store_client: CoordinationClient) -> None:
    watch = store_client.watch_prefix("/cfg/")
    next(watch)
    watch.cancel()
    watch.cancel()
    assert list(watch) == []


def test_close_is_idempotent_and_final(memory_store: InMemoryStoreDriver) -> None:
    client = CoordinationClient(memory_store, timeout=1.0, backoff=FAST)
    watch = client.watch_prefix("/cfg/")
    next(watch)
    client.close()
    client.close()
    assert client.closed
    assert watch.cancelled
    assert memory_store.closed
    with pytest.raises(StoreUnavailable):
        client.get("/cfg/a")
    with pytest.raises(StoreUnavailable):
        client.watch_prefix("/cfg/")
