"""Watch-driven reconfiguration for one coordination store prefix.

Purpose
-------
Keep the remote source for a prefix current: seed it from an authoritative
range read, follow the prefix subscription, re-merge on every change, and
publish a new snapshot through :class:`SnapshotPublisher`, which notifies the
registered callbacks.

State machine
-------------
``IDLE → SUBSCRIBING → STREAMING → (RECONNECTING ↔ STREAMING) → STOPPED``

* :meth:`WatchDispatcher.start` seeds the cache (``IDLE → SUBSCRIBING``) and
  starts the worker thread.
* The :class:`CaughtUp` marker or the first event moves to ``STREAMING``.
* A :class:`StoreUnavailable` from the subscription moves to ``RECONNECTING``;
  the worker sleeps with backoff and re-subscribes from the last seen
  revision. Redelivered events are ignored by :class:`RemoteTree`. When
  that re-subscription fails too (for example because the revision was
  compacted), the prefix is re-read with :meth:`WatchDispatcher.resync` and
  followed from the fresh revision.
* The attempt counter and backoff reset only once a subscription delivered
  an event, so a subscription that fails right after ``CaughtUp`` still
  counts towards ``max_reconnect_attempts``.
* :meth:`WatchDispatcher.stop` (or exhausting ``max_reconnect_attempts``)
  moves to ``STOPPED``.

Event handling runs on the dispatcher's own worker thread, never on the
store client's event loop, so slow callbacks cannot stall event consumption.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable

from ..domain.config import ConfigSnapshot
from ..domain.errors import ConfigError, StoreUnavailable
from ..domain.events import CaughtUp, WatchEvent
from ..observability import bind_trace_id, log_debug, log_error, log_info, log_warning
from .ports import CoordinationPort, WatchSubscription
from .remote import RemoteTree
from .retry import Backoff
from .snapshots import SnapshotPublisher


class DispatcherState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class WatchDispatcher:
    """Follow one store prefix and republish configuration on change.

    Parameters
    ----------
    client:
        Blocking store façade (``get_prefix`` and ``watch_prefix``).
    publisher:
        Snapshot publisher that owns the other sources and the callbacks.
    prefix:
        Store key prefix to follow.
    priority:
        Merge priority of the remote source (defaults to the remote origin's).
    decoder:
        Optional value decoder, see :class:`RemoteTree`.
    max_reconnect_attempts:
        Consecutive failed subscriptions tolerated before stopping; ``None``
        retries forever.
    """

    def __init__(
        self,
        client: CoordinationPort,
        publisher: SnapshotPublisher,
        prefix: str,
        *,
        priority: int | None = None,
        name: str = "",
        decoder: Callable[[bytes], Any] | None = None,
        separator: str = "/",
        backoff: Backoff | None = None,
        max_reconnect_attempts: int | None = None,
    ) -> None:
        self._client = client
        self._publisher = publisher
        self._tree = RemoteTree(prefix, separator=separator, decoder=decoder)
        self._priority = priority
        self.source_name = name or f"remote:{prefix}"
        self._backoff = backoff or Backoff(base=0.2, max_sleep=10.0)
        self._max_reconnect_attempts = max_reconnect_attempts
        self._state = DispatcherState.IDLE
        self._state_changed = threading.Condition()
        self._apply_lock = threading.Lock()
        self._stop = threading.Event()
        self._subscription: WatchSubscription | None = None
        self._thread: threading.Thread | None = None
        self._seeded = False
        self._received = False
        self.last_error: BaseException | None = None

    @property
    def prefix(self) -> str:
        return self._tree.prefix

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def revision(self) -> int:
        """Highest store revision applied so far."""

        return self._tree.revision

    def start(self) -> None:
        """Seed the remote source and start following the prefix.

        Raises
        ------
        StoreUnavailable
            When the initial range read fails; the dispatcher is then stopped.
        """

        with self._state_changed:
            if self._state is not DispatcherState.IDLE:
                raise RuntimeError(f"dispatcher for {self.prefix!r} already started")
        self._set_state(DispatcherState.SUBSCRIBING)
        try:
            self.resync()
        except StoreUnavailable as exc:
            self.last_error = exc
            self._set_state(DispatcherState.STOPPED)
            raise
        self._thread = threading.Thread(
            target=self._run,
            name=f"lib-cluster-config-watch:{self.prefix}",
            daemon=True,
        )
        self._thread.start()
        log_info("watch_started", layer=self.source_name, path=self.prefix, revision=self.revision)

    def stop(self, timeout: float | None = None) -> None:
        """Cancel the subscription, wait for in-flight dispatch, and stop."""

        self._stop.set()
        with self._state_changed:
            subscription = self._subscription
        if subscription is not None:
            subscription.cancel()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._set_state(DispatcherState.STOPPED)

    def wait_for_state(self, state: DispatcherState, timeout: float | None = None) -> bool:
        """Block until the dispatcher reaches *state*; ``False`` on timeout."""

        with self._state_changed:
            return self._state_changed.wait_for(lambda: self._state is state, timeout=timeout)

    def resync(self) -> ConfigSnapshot | None:
        """Re-read the whole prefix and publish when the content changed."""

        values, revision = self._client.get_prefix(self.prefix)
        with self._apply_lock:
            changed = self._tree.reset(values, revision)
            if not changed and self._seeded:
                return None
            self._seeded = True
            log_debug("remote_source_loaded", layer=self.source_name, path=self.prefix, keys=len(self._tree))
            return self._publisher.replace_source(self._tree.source(priority=self._priority, name=self.source_name))

    def apply(self, event: WatchEvent) -> ConfigSnapshot | None:
        """Apply one event; returns the published snapshot or ``None`` when nothing changed.

        Idempotent: an event at or below the last applied revision is ignored.
        """

        with self._apply_lock:
            if not self._tree.apply(event):
                log_debug(
                    "watch_event_ignored",
                    layer=self.source_name,
                    path=event.key,
                    revision=event.revision,
                )
                return None
            return self._publisher.replace_source(self._tree.source(priority=self._priority, name=self.source_name))

    def _run(self) -> None:
        bind_trace_id(f"watch:{self.prefix}")
        attempt = 0
        start_revision = self._tree.revision + 1
        try:
            while not self._stop.is_set():
                try:
                    if attempt > 1:
                        # resuming from the last revision failed as well
                        self.resync()
                        start_revision = self._tree.revision + 1
                    self._stream(start_revision)
                    return
                except StoreUnavailable as exc:
                    if self._stop.is_set():
                        return
                    self.last_error = exc
                    if self._received:
                        attempt = 0
                    if self._max_reconnect_attempts is not None and attempt >= self._max_reconnect_attempts:
                        log_error(
                            "watch_abandoned",
                            layer=self.source_name,
                            path=self.prefix,
                            attempts=attempt,
                            error=str(exc),
                        )
                        return
                    self._set_state(DispatcherState.RECONNECTING)
                    delay = self._backoff.delay(attempt)
                    attempt += 1
                    log_warning(
                        "watch_reconnecting",
                        layer=self.source_name,
                        path=self.prefix,
                        attempt=attempt,
                        delay=round(delay, 3),
                        revision=self._tree.revision,
                        resync=attempt > 1,
                        error=str(exc),
                    )
                    if self._stop.wait(delay):
                        return
                    start_revision = self._tree.revision
                except ConfigError as exc:
                    self.last_error = exc
                    log_error("watch_failed", layer=self.source_name, path=self.prefix, error=str(exc))
                    return
        finally:
            with self._state_changed:
                self._subscription = None
            self._set_state(DispatcherState.STOPPED)

    def _stream(self, start_revision: int) -> None:
        self._received = False
        subscription = self._client.watch_prefix(self.prefix, start_revision=start_revision)
        with self._state_changed:
            self._subscription = subscription
        if self._stop.is_set():
            subscription.cancel()
            return
        try:
            for item in subscription:
                if self._state is not DispatcherState.STREAMING:
                    self._set_state(DispatcherState.STREAMING)
                if isinstance(item, CaughtUp):
                    continue
                self.apply(item)
                self._received = True
        finally:
            subscription.cancel()

    def _set_state(self, state: DispatcherState) -> None:
        with self._state_changed:
            if self._state is state:
                return
            if self._state is DispatcherState.STOPPED:
                return
            previous, self._state = self._state, state
            self._state_changed.notify_all()
        log_debug("watch_state", layer=self.source_name, path=self.prefix, previous=previous.value, state=state.value)
