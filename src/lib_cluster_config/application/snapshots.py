"""Snapshot publication and change notification.

Purpose
-------
Keep the single current :class:`ConfigSnapshot` and replace it wholesale when
a source changes.

Contents
--------
* :class:`SnapshotHandle` – the reference readers follow; reading it takes no
  lock, publishing swaps one attribute.
* :class:`SnapshotPublisher` – owns the named sources, re-runs the merge when
  one is replaced, publishes ``version + 1``, and notifies callbacks.

Concurrency
-----------
Readers only ever load ``handle.current``; an attribute load is atomic, and
every snapshot is immutable, so a reader sees one complete version. Writers
serialise on the publisher's lock and queue their notification under it.
Callbacks run after that lock is released, on whichever publishing thread
finds no other thread delivering; one thread delivers at a time, in version
order. A publication made while another thread is delivering returns before
its callbacks have run, and so does one made from inside a callback.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Mapping
from typing import Any, Callable, Iterable

from ..domain.config import EMPTY_SNAPSHOT, ConfigSnapshot
from ..domain.value import ConfigSource
from ..observability import log_debug, log_error, log_info
from .merge import ConflictPolicy, merge_sources

ChangeCallback = Callable[[ConfigSnapshot], None]


class SnapshotHandle:
    """Thread-safe holder of the current snapshot.

    Examples
    --------
    >>> handle = SnapshotHandle()
    >>> handle.current.version
    0
    >>> handle.publish(ConfigSnapshot({"a": 1}, {}, 1))
    >>> handle.current.get("a")
    1
    """

    def __init__(self, initial: ConfigSnapshot = EMPTY_SNAPSHOT) -> None:
        self._current = initial
        self._changed = threading.Condition()

    @property
    def current(self) -> ConfigSnapshot:
        return self._current

    def publish(self, snapshot: ConfigSnapshot) -> None:
        """Make *snapshot* current; versions must increase."""

        with self._changed:
            if snapshot.version <= self._current.version:
                raise ValueError(
                    f"snapshot version {snapshot.version} does not follow {self._current.version}"
                )
            self._current = snapshot
            self._changed.notify_all()

    def wait_for_version(self, version: int, timeout: float | None = None) -> ConfigSnapshot | None:
        """Block until a snapshot with at least *version* is current.

        Returns the snapshot, or ``None`` when *timeout* expires first.
        """

        with self._changed:
            reached = self._changed.wait_for(lambda: self._current.version >= version, timeout=timeout)
            return self._current if reached else None


class SnapshotPublisher:
    """Merge named sources into snapshots and notify subscribers.

    Parameters
    ----------
    sources:
        Initial sources; names must be unique (a later duplicate replaces the
        earlier one).
    conflict:
        Merge policy for mapping/non-mapping collisions.
    """

    def __init__(
        self,
        sources: Iterable[ConfigSource] = (),
        *,
        conflict: ConflictPolicy = "replace",
        handle: SnapshotHandle | None = None,
    ) -> None:
        self._conflict = conflict
        self._sources: dict[str, ConfigSource] = {}
        for source in sources:
            self._sources[source.name] = source
        self._callbacks: list[tuple[str, ChangeCallback]] = []
        self._write_lock = threading.RLock()
        self._pending: deque[tuple[ConfigSnapshot, ConfigSnapshot, list[tuple[str, ChangeCallback]]]] = deque()
        self._pending_lock = threading.Lock()
        self._delivering = False
        self.handle = handle or SnapshotHandle()
        data, meta = merge_sources(self._sources.values(), conflict=self._conflict)
        self.handle.publish(ConfigSnapshot(data, meta, self.handle.current.version + 1))
        log_info("configuration_merged", layer="final", path=None, total_layers=len(self._sources))

    @property
    def current(self) -> ConfigSnapshot:
        return self.handle.current

    def sources(self) -> list[ConfigSource]:
        with self._write_lock:
            return list(self._sources.values())

    def on_config_change(self, prefix: str, callback: ChangeCallback) -> Callable[[], None]:
        """Call *callback* with each new snapshot whose subtree at *prefix* changed.

        ``prefix`` is a dotted configuration path; ``""`` matches every
        change. Returns a function that removes the registration.
        """

        entry = (prefix, callback)
        with self._write_lock:
            self._callbacks.append(entry)

        def unregister() -> None:
            with self._write_lock:
                if entry in self._callbacks:
                    self._callbacks.remove(entry)

        return unregister

    def replace_source(self, source: ConfigSource) -> ConfigSnapshot:
        """Swap the source named ``source.name`` (or add it) and publish the result."""

        with self._write_lock:
            self._sources[source.name] = source
            snapshot = self._publish(source.name)
        self._deliver()
        return snapshot

    def remove_source(self, name: str) -> ConfigSnapshot:
        """Drop the source called *name* and publish the result."""

        with self._write_lock:
            self._sources.pop(name, None)
            snapshot = self._publish(name)
        self._deliver()
        return snapshot

    def _publish(self, cause: str) -> ConfigSnapshot:
        previous = self.handle.current
        data, meta = merge_sources(self._sources.values(), conflict=self._conflict)
        snapshot = ConfigSnapshot(data, meta, previous.version + 1)
        self.handle.publish(snapshot)
        log_debug("snapshot_published", layer=cause, path=None, version=snapshot.version)
        with self._pending_lock:
            self._pending.append((previous, snapshot, list(self._callbacks)))
        return snapshot

    def _deliver(self) -> None:
        with self._pending_lock:
            if self._delivering:
                return
            self._delivering = True
        try:
            while True:
                with self._pending_lock:
                    if not self._pending:
                        self._delivering = False
                        return
                    previous, snapshot, callbacks = self._pending.popleft()
                self._notify(previous, snapshot, callbacks)
        except BaseException:
            with self._pending_lock:
                self._delivering = False
            raise

    def _notify(
        self,
        previous: ConfigSnapshot,
        snapshot: ConfigSnapshot,
        callbacks: list[tuple[str, ChangeCallback]],
    ) -> None:
        for prefix, callback in callbacks:
            if _subtree_equal(previous.subtree(prefix), snapshot.subtree(prefix)):
                continue
            try:
                callback(snapshot)
            except Exception as exc:  # noqa: BLE001 - one subscriber must not break the others
                log_error(
                    "callback_failed",
                    layer="final",
                    path=None,
                    prefix=prefix,
                    callback=getattr(callback, "__qualname__", repr(callback)),
                    version=snapshot.version,
                    error=repr(exc),
                )


def _subtree_equal(left: Any, right: Any) -> bool:
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return dict(left) == dict(right)
    return left == right
