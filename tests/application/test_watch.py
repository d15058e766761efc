"""Watch dispatcher against the in-memory store: seeding, live updates, reconnects."""

from __future__ import annotations

from typing import Iterator

import pytest

from lib_cluster_config.adapters.store.bridge import CoordinationClient
from lib_cluster_config.adapters.store.memory import InMemoryStoreDriver
from lib_cluster_config.application.retry import Backoff
from lib_cluster_config.application.snapshots import SnapshotPublisher
from lib_cluster_config.application.watch import DispatcherState, WatchDispatcher
from lib_cluster_config.domain.config import ConfigSnapshot
from lib_cluster_config.domain.errors import StoreUnavailable
from lib_cluster_config.domain.events import CaughtUp, StoredValue, WatchEvent
from lib_cluster_config.domain.value import ConfigSource, Origin

WAIT = 5.0


@pytest.fixture()
def publisher() -> SnapshotPublisher:
    return SnapshotPublisher([ConfigSource.of(Origin.FILE, {"a": {"c": 0}}, name="file:app.yaml")])


@pytest.fixture()
def dispatcher(
    store_client: CoordinationClient,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
    fast_backoff: Backoff,
) -> Iterator[WatchDispatcher]:
    memory_store.set("/cfg/a/b", "1")
    watcher = WatchDispatcher(store_client, publisher, "/cfg/", backoff=fast_backoff)
    watcher.start()
    assert watcher.wait_for_state(DispatcherState.STREAMING, timeout=WAIT)
    try:
        yield watcher
    finally:
        watcher.stop(timeout=WAIT)


def _await_version(publisher: SnapshotPublisher, version: int) -> ConfigSnapshot:
    snapshot = publisher.handle.wait_for_version(version, timeout=WAIT)
    assert snapshot is not None, f"version {version} was never published"
    return snapshot


def test_start_seeds_the_remote_layer(dispatcher: WatchDispatcher, publisher: SnapshotPublisher) -> None:
    snapshot = publisher.current
    assert snapshot.version == 2
    assert snapshot.as_dict() == {"a": {"b": 1, "c": 0}}
    assert dispatcher.revision == 1
    assert snapshot.origin("a.b")["layer"] == "remote:/cfg/"


def test_put_publishes_a_new_version_and_notifies(
    dispatcher: WatchDispatcher,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
) -> None:
    calls: list[int] = []
    publisher.on_config_change("a", lambda snap: calls.append(snap.version))
    version = publisher.current.version
    memory_store.set("/cfg/a/b", "99")
    snapshot = _await_version(publisher, version + 1)
    assert snapshot.get("a.b") == 99
    assert calls == [version + 1]


def test_delete_removes_the_value(
    dispatcher: WatchDispatcher,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
) -> None:
    version = publisher.current.version
    memory_store.remove("/cfg/a/b")
    snapshot = _await_version(publisher, version + 1)
    assert snapshot.as_dict() == {"a": {"c": 0}}


def test_redelivered_event_changes_nothing(
    dispatcher: WatchDispatcher,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
) -> None:
    version = publisher.current.version
    revision = memory_store.set("/cfg/x", "7")
    _await_version(publisher, version + 1)
    assert dispatcher.apply(WatchEvent.put("/cfg/x", b"7", revision)) is None
    assert publisher.current.version == version + 1


def test_updates_missed_while_disconnected_are_replayed(
    store_client: CoordinationClient,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
) -> None:
    watcher = WatchDispatcher(
        store_client,
        publisher,
        "/cfg/",
        backoff=Backoff(base=0.3, multiplier=1.0, max_sleep=0.3, jitter=0.0),
    )
    watcher.start()
    try:
        assert watcher.wait_for_state(DispatcherState.STREAMING, timeout=WAIT)
        version = publisher.current.version
        memory_store.disconnect_watchers()
        assert watcher.wait_for_state(DispatcherState.RECONNECTING, timeout=WAIT)
        memory_store.set("/cfg/late", "true")
        assert watcher.wait_for_state(DispatcherState.STREAMING, timeout=WAIT)
        snapshot = _await_version(publisher, version + 1)
        assert snapshot.get("late") is True
        assert isinstance(watcher.last_error, StoreUnavailable)
    finally:
        watcher.stop(timeout=WAIT)
    assert watcher.state is DispatcherState.STOPPED


def test_gives_up_after_max_reconnect_attempts(
    store_client: CoordinationClient,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
    fast_backoff: Backoff,
) -> None:
    watcher = WatchDispatcher(
        store_client,
        publisher,
        "/cfg/",
        backoff=fast_backoff,
        max_reconnect_attempts=2,
    )
    watcher.start()
    try:
        assert watcher.wait_for_state(DispatcherState.STREAMING, timeout=WAIT)
        memory_store.fail_next(100)
        memory_store.disconnect_watchers()
        assert watcher.wait_for_state(DispatcherState.STOPPED, timeout=WAIT)
        assert isinstance(watcher.last_error, StoreUnavailable)
    finally:
        watcher.stop(timeout=WAIT)


def test_start_fails_when_the_store_is_unreachable(
    store_client: CoordinationClient,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
) -> None:
    memory_store.fail_next(10)
    watcher = WatchDispatcher(store_client, publisher, "/cfg/")
    with pytest.raises(StoreUnavailable):
        watcher.start()
    assert watcher.state is DispatcherState.STOPPED
    assert publisher.current.version == 1


def test_start_twice_is_rejected(dispatcher: WatchDispatcher) -> None:
    with pytest.raises(RuntimeError):
        dispatcher.start()


def test_stop_ends_publication(
    dispatcher: WatchDispatcher,
    publisher: SnapshotPublisher,
    memory_store: InMemoryStoreDriver,
) -> None:
    dispatcher.stop(timeout=WAIT)
    assert dispatcher.state is DispatcherState.STOPPED
    version = publisher.current.version
    memory_store.set("/cfg/a/b", "5")
    assert publisher.handle.wait_for_version(version + 1, timeout=0.2) is None


def test_transaction_writes_with_one_revision_all_apply(
    dispatcher: WatchDispatcher,
    publisher: SnapshotPublisher,
) -> None:
    revision = dispatcher.revision + 1
    version = publisher.current.version
    dispatcher.apply(WatchEvent.put("/cfg/db/host", b'"db1"', revision))
    dispatcher.apply(WatchEvent.put("/cfg/db/port", b"5432", revision))
    assert publisher.current.version == version + 2
    assert publisher.current.get("db") == {"host": "db1", "port": 5432}


class _FailingSubscription:
    """Accepted subscription that breaks right after the ``CaughtUp`` marker."""

    def __init__(self, start_revision: int | None) -> None:
        self._items: list[object] = [CaughtUp(start_revision)]

    def __iter__(self) -> _FailingSubscription:
        return self

    def __next__(self) -> object:
        if self._items:
            return self._items.pop(0)
        raise StoreUnavailable("etcdserver: mvcc: required revision has been compacted")

    def cancel(self) -> None:
        self._items = []


class _CompactedStore:
    """Coordination client whose history before revision 100 is compacted."""

    def __init__(self) -> None:
        self.range_reads = 0
        self.start_revisions: list[int | None] = []

    def get_prefix(self, prefix: str) -> tuple[list[StoredValue], int]:
        self.range_reads += 1
        return [StoredValue(prefix + "a", b"1", 100)], 100

    def watch_prefix(self, prefix: str, *, start_revision: int | None = None) -> _FailingSubscription:
        self.start_revisions.append(start_revision)
        return _FailingSubscription(start_revision)


def test_failing_subscriptions_resync_and_exhaust_attempts(
    publisher: SnapshotPublisher,
    fast_backoff: Backoff,
) -> None:
    store = _CompactedStore()
    watcher = WatchDispatcher(store, publisher, "/cfg/", backoff=fast_backoff, max_reconnect_attempts=3)
    watcher.start()
    try:
        assert watcher.wait_for_state(DispatcherState.STOPPED, timeout=WAIT)
    finally:
        watcher.stop(timeout=WAIT)
    assert store.start_revisions == [101, 100, 101, 101]
    assert store.range_reads == 3
    assert isinstance(watcher.last_error, StoreUnavailable)
    assert publisher.current.get("a") == 1


def test_compacted_history_is_recovered_by_rereading_the_prefix(
    publisher: SnapshotPublisher,
    fast_backoff: Backoff,
) -> None:
    store = InMemoryStoreDriver(history_limit=2)
    client = CoordinationClient(store, timeout=2.0, retries=0, backoff=fast_backoff)
    watcher = WatchDispatcher(
        client,
        publisher,
        "/cfg/",
        backoff=Backoff(base=0.3, multiplier=1.0, max_sleep=0.3, jitter=0.0),
    )
    try:
        watcher.start()
        assert watcher.wait_for_state(DispatcherState.STREAMING, timeout=WAIT)
        version = publisher.current.version
        store.disconnect_watchers()
        assert watcher.wait_for_state(DispatcherState.RECONNECTING, timeout=WAIT)
        for index in range(3):
            store.set(f"/cfg/k{index}", str(index))
        snapshot = _await_version(publisher, version + 1)
        assert snapshot.as_dict() == {"a": {"c": 0}, "k0": 0, "k1": 1, "k2": 2}
        assert watcher.wait_for_state(DispatcherState.STREAMING, timeout=WAIT)
    finally:
        watcher.stop(timeout=WAIT)
        client.close()
