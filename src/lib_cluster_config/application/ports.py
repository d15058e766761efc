"""Application-layer ports describing adapter responsibilities.

Purpose
-------
Define the structural contracts adapters satisfy so the application layer and
the composition root orchestrate behaviour without importing concrete
implementations.

Contents
--------
* :class:`FileLoader` – parses a structured configuration file.
* :class:`EnvLoader` – materialises process environment variables.
* :class:`AsyncWatch` / :class:`StoreDriver` – the asynchronous coordination
  store driver driven from the client's event loop.
* :class:`WatchSubscription` / :class:`CoordinationPort` – the blocking
  façade the watch dispatcher consumes.

System Role
-----------
These protocols enforce Dependency Inversion: the etcd driver and the
in-memory driver both implement :class:`StoreDriver`, and the watch
dispatcher only knows :class:`CoordinationPort`.
"""

from __future__ import annotations

from typing import AsyncIterator, Iterator, Mapping, Protocol, runtime_checkable

from ..domain.events import StoredValue, WatchEvent, WatchItem


@runtime_checkable
class FileLoader(Protocol):
    """Parse a structured configuration file into a mapping."""

    def load(self, path: str) -> Mapping[str, object]:
        """Read *path* and return a mapping or raise ``ParseError``/``NotFound``."""


@runtime_checkable
class EnvLoader(Protocol):
    """Translate process environment variables into nested dictionaries."""

    def load(self, prefix: str) -> Mapping[str, object]:
        """Return variables that match *prefix* (``__`` for nesting)."""


@runtime_checkable
class AsyncWatch(Protocol):
    """Open store subscription yielding events until cancelled."""

    def __aiter__(self) -> AsyncIterator[WatchEvent]:
        ...

    async def cancel(self) -> None:
        """Release the subscription on the server side."""


@runtime_checkable
class StoreDriver(Protocol):
    """Asynchronous key-value store with revisions and prefix watches.

    Every coroutine runs on the event loop owned by
    :class:`lib_cluster_config.adapters.store.bridge.CoordinationClient`.
    Transport failures raise ``StoreUnavailable``.
    """

    async def get(self, key: str) -> StoredValue | None:
        """Return the stored value or ``None`` when the key is absent."""

    async def get_prefix(self, prefix: str) -> tuple[list[StoredValue], int]:
        """Return all values under *prefix* and the store revision of the read."""

    async def put(self, key: str, value: bytes, *, prev_revision: int | None = None) -> int:
        """Write *value*; conditional on the key's revision when *prev_revision* is set."""

    async def delete(self, key: str) -> int | None:
        """Delete *key* returning the new revision, ``None`` when nothing was deleted."""

    async def watch_prefix(self, prefix: str, *, start_revision: int | None = None) -> AsyncWatch:
        """Open a subscription for every key under *prefix*."""

    async def close(self) -> None:
        """Release connections."""


@runtime_checkable
class WatchSubscription(Protocol):
    """Blocking iterator over one store subscription."""

    def __iter__(self) -> Iterator[WatchItem]:
        ...

    def __next__(self) -> WatchItem:
        ...

    def cancel(self) -> None:
        """End the subscription; iteration stops afterwards."""


@runtime_checkable
class CoordinationPort(Protocol):
    """Blocking store operations needed to keep a remote source current."""

    def get_prefix(self, prefix: str) -> tuple[list[StoredValue], int]:
        ...

    def watch_prefix(self, prefix: str, *, start_revision: int | None = None) -> WatchSubscription:
        ...
