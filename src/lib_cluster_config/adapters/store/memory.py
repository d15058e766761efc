"""In-process coordination store.

Purpose
-------
Implement :class:`lib_cluster_config.application.ports.StoreDriver` without a
server: revisioned keys, prefix watches with replay from a start revision,
and fault injection for exercising retry and reconnect paths. Useful for
tests and for running a service locally without etcd.

Thread model
------------
State is guarded by a :class:`threading.Lock`, so the synchronous helpers
(:meth:`InMemoryStoreDriver.set`, :meth:`~InMemoryStoreDriver.remove`,
:meth:`~InMemoryStoreDriver.disconnect_watchers`) may be called from any
thread while the coroutines run on the client's event loop. Watch queues live
on the loop that opened them and are fed with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from typing import AsyncIterator

from ...domain.errors import PreconditionFailed, StoreUnavailable
from ...domain.events import EventKind, StoredValue, WatchEvent

_CLOSED = object()


class _MemoryWatch:
    """Subscription handed out by :meth:`InMemoryStoreDriver.watch_prefix`."""

    def __init__(self, store: InMemoryStoreDriver, prefix: str, loop: asyncio.AbstractEventLoop) -> None:
        self.prefix = prefix
        self._store = store
        self._loop = loop
        self._queue: asyncio.Queue[object] = asyncio.Queue()

    def deliver(self, item: object) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # loop already closed; the subscription is gone with it
            pass

    def __aiter__(self) -> AsyncIterator[WatchEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[WatchEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, BaseException):
                raise item
            yield item  # type: ignore[misc]

    async def cancel(self) -> None:
        self._store._unregister(self)
        self._queue.put_nowait(_CLOSED)


class InMemoryStoreDriver:
    """Revisioned key-value store with etcd-like prefix watches.

    Examples
    --------
    >>> store = InMemoryStoreDriver()
    >>> store.set("/cfg/a", b"1")
    1
    >>> store.set("/cfg/b", b"2")
    2
    >>> store.revision
    2

    Only the last *history_limit* events are kept for watch replay; a watch
    starting at or below the newest dropped revision fails the way etcd
    reports a compacted revision.
    """

    def __init__(self, *, history_limit: int = 10_000) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self._lock = threading.Lock()
        self._data: dict[str, StoredValue] = {}
        self._history: deque[WatchEvent] = deque(maxlen=history_limit)
        self._compacted = 0
        self._watchers: list[_MemoryWatch] = []
        self._revision = 0
        self._failures_pending = 0
        self.closed = False

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def compacted_revision(self) -> int:
        """Newest revision no longer available for watch replay."""

        return self._compacted

    @property
    def watcher_count(self) -> int:
        with self._lock:
            return len(self._watchers)

    def set(self, key: str, value: bytes | str) -> int:
        """Write *value* from any thread and notify watchers; return the revision."""

        payload = value.encode("utf-8") if isinstance(value, str) else value
        with self._lock:
            return self._apply(WatchEvent.put(key, payload, self._revision + 1))

    def remove(self, key: str) -> int | None:
        """Delete *key* from any thread; ``None`` when it did not exist."""

        with self._lock:
            if key not in self._data:
                return None
            return self._apply(WatchEvent.delete(key, self._revision + 1))

    def fail_next(self, count: int = 1) -> None:
        """Make the next *count* operations raise :class:`StoreUnavailable`."""

        with self._lock:
            self._failures_pending += count

    def disconnect_watchers(self, reason: str = "connection lost") -> None:
        """Terminate every open subscription with :class:`StoreUnavailable`."""

        with self._lock:
            watchers, self._watchers = self._watchers, []
        for watch in watchers:
            watch.deliver(StoreUnavailable(reason))

    async def get(self, key: str) -> StoredValue | None:
        with self._lock:
            self._maybe_fail()
            return self._data.get(key)

    async def get_prefix(self, prefix: str) -> tuple[list[StoredValue], int]:
        with self._lock:
            self._maybe_fail()
            values = [self._data[key] for key in sorted(self._data) if key.startswith(prefix)]
            return values, self._revision

    async def put(self, key: str, value: bytes, *, prev_revision: int | None = None) -> int:
        with self._lock:
            self._maybe_fail()
            if prev_revision is not None:
                current = self._data.get(key)
                current_revision = current.revision if current is not None else 0
                if current_revision != prev_revision:
                    raise PreconditionFailed(key, prev_revision)
            return self._apply(WatchEvent.put(key, value, self._revision + 1))

    async def delete(self, key: str) -> int | None:
        with self._lock:
            self._maybe_fail()
            if key not in self._data:
                return None
            return self._apply(WatchEvent.delete(key, self._revision + 1))

    async def watch_prefix(self, prefix: str, *, start_revision: int | None = None) -> _MemoryWatch:
        watch = _MemoryWatch(self, prefix, asyncio.get_running_loop())
        with self._lock:
            self._maybe_fail()
            if start_revision is not None and start_revision <= self._compacted:
                raise StoreUnavailable(
                    f"required revision {start_revision} has been compacted (compact revision {self._compacted})"
                )
            if start_revision is not None:
                for event in self._history:
                    if event.revision >= start_revision and event.key.startswith(prefix):
                        watch._queue.put_nowait(event)
            self._watchers.append(watch)
        return watch

    async def close(self) -> None:
        with self._lock:
            watchers, self._watchers = self._watchers, []
            self.closed = True
        for watch in watchers:
            watch.deliver(_CLOSED)

    def _apply(self, event: WatchEvent) -> int:
        """Record *event*; caller holds the lock."""

        self._revision = event.revision
        if event.kind is EventKind.PUT:
            assert event.value is not None
            self._data[event.key] = StoredValue(event.key, event.value, event.revision)
        else:
            self._data.pop(event.key, None)
        if len(self._history) == self._history.maxlen:
            self._compacted = self._history[0].revision
        self._history.append(event)
        for watch in self._watchers:
            if event.key.startswith(watch.prefix):
                watch.deliver(event)
        return event.revision

    def _maybe_fail(self) -> None:
        if self._failures_pending:
            self._failures_pending -= 1
            raise StoreUnavailable("injected failure")

    def _unregister(self, watch: _MemoryWatch) -> None:
        with self._lock:
            if watch in self._watchers:
                self._watchers.remove(watch)
