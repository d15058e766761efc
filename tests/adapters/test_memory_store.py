"""In-memory store: bounded watch history behaves like etcd compaction."""

from __future__ import annotations

import asyncio

import pytest

from lib_cluster_config.adapters.store.memory import InMemoryStoreDriver
from lib_cluster_config.domain.errors import StoreUnavailable
from lib_cluster_config.domain.events import WatchEvent


def test_history_is_bounded() -> None:
    store = InMemoryStoreDriver(history_limit=3)
    for index in range(10):
        store.set(f"/cfg/k{index}", str(index))
    assert store.revision == 10
    assert store.compacted_revision == 7


def test_replay_from_a_retained_revision() -> None:
    store = InMemoryStoreDriver(history_limit=3)
    for index in range(5):
        store.set(f"/cfg/k{index}", str(index))

    async def replay() -> list[WatchEvent]:
        watch = await store.watch_prefix("/cfg/", start_revision=3)
        received = []
        async for event in watch:
            received.append(event)
            if len(received) == 3:
                break
        await watch.cancel()
        return received

    assert [event.revision for event in asyncio.run(replay())] == [3, 4, 5]


def test_watch_from_a_compacted_revision_fails() -> None:
    store = InMemoryStoreDriver(history_limit=2)
    for index in range(4):
        store.set(f"/cfg/k{index}", str(index))
    with pytest.raises(StoreUnavailable, match="compacted"):
        asyncio.run(store.watch_prefix("/cfg/", start_revision=2))
    assert store.watcher_count == 0


def test_history_limit_must_be_positive() -> None:
    with pytest.raises(ValueError):
        InMemoryStoreDriver(history_limit=0)
