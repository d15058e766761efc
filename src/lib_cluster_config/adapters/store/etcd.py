"""etcd v3 driver built on the ``aetcd`` asyncio client.

Purpose
-------
Implement :class:`lib_cluster_config.application.ports.StoreDriver` for a real
etcd cluster. ``aetcd`` channels bind to the event loop that creates them, so
the client is constructed lazily inside the first coroutine, which always
runs on the loop owned by
:class:`lib_cluster_config.adapters.store.bridge.CoordinationClient`.

Error mapping
-------------
Every ``aetcd`` client error becomes :class:`StoreUnavailable`; a failed
comparison in a conditional write becomes :class:`PreconditionFailed`.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

import aetcd
import aetcd.exceptions
import aetcd.rtypes

from ...domain.errors import PreconditionFailed, StoreUnavailable
from ...domain.events import StoredValue, WatchEvent
from ...observability import log_debug
from ..env.store import StoreSettings


def _encode(key: str) -> bytes:
    return key.encode("utf-8")


def _decode(key: bytes) -> str:
    return key.decode("utf-8")


class _EtcdWatch:
    """Adapts an ``aetcd`` watch to the driver's event model."""

    def __init__(self, watch: Any) -> None:
        self._watch = watch

    def __aiter__(self) -> AsyncIterator[WatchEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[WatchEvent]:
        try:
            async for event in self._watch:
                kv = event.kv
                if event.kind == aetcd.rtypes.EventKind.DELETE:
                    yield WatchEvent.delete(_decode(kv.key), kv.mod_revision)
                else:
                    yield WatchEvent.put(_decode(kv.key), kv.value, kv.mod_revision)
        except aetcd.exceptions.ClientError as exc:
            raise StoreUnavailable(exc) from exc

    async def cancel(self) -> None:
        try:
            await self._watch.cancel()
        except aetcd.exceptions.ClientError as exc:
            log_debug("watch_cancel_failed", layer="remote", path=None, error=str(exc))


class AsyncEtcdDriver:
    """``StoreDriver`` speaking to etcd through ``aetcd.Client``."""

    def __init__(self, settings: StoreSettings) -> None:
        self._settings = settings
        self._client: aetcd.Client | None = None

    def _ensure_client(self) -> aetcd.Client:
        if self._client is None:
            host, port = self._settings.host_port
            self._client = aetcd.Client(
                host=host,
                port=port,
                username=self._settings.user,
                password=self._settings.password,
                timeout=self._settings.timeout,
            )
            log_debug("etcd_client_created", layer="remote", path=None, host=host, port=port)
        return self._client

    async def get(self, key: str) -> StoredValue | None:
        client = self._ensure_client()
        try:
            result = await client.get(_encode(key))
        except aetcd.exceptions.ClientError as exc:
            raise StoreUnavailable(exc) from exc
        if result is None:
            return None
        return StoredValue(key, result.value, result.mod_revision)

    async def get_prefix(self, prefix: str) -> tuple[list[StoredValue], int]:
        client = self._ensure_client()
        try:
            result = await client.get_prefix(_encode(prefix))
        except aetcd.exceptions.ClientError as exc:
            raise StoreUnavailable(exc) from exc
        values = [StoredValue(_decode(kv.key), kv.value, kv.mod_revision) for kv in result]
        return values, result.header.revision

    async def put(self, key: str, value: bytes, *, prev_revision: int | None = None) -> int:
        client = self._ensure_client()
        encoded = _encode(key)
        try:
            if prev_revision is None:
                result = await client.put(encoded, value)
                return result.header.revision
            succeeded, responses = await client.transaction(
                compare=[client.transactions.mod(encoded) == prev_revision],
                success=[client.transactions.put(encoded, value)],
                failure=[],
            )
            if not succeeded:
                raise PreconditionFailed(key, prev_revision)
        except aetcd.exceptions.ClientError as exc:
            raise StoreUnavailable(exc) from exc
        # revision of the transaction's own put
        return responses[0].header.revision

    async def delete(self, key: str) -> int | None:
        client = self._ensure_client()
        try:
            result = await client.delete(_encode(key))
        except aetcd.exceptions.ClientError as exc:
            raise StoreUnavailable(exc) from exc
        if result is None or not getattr(result, "deleted", 1):
            return None
        return result.header.revision

    async def watch_prefix(self, prefix: str, *, start_revision: int | None = None) -> _EtcdWatch:
        client = self._ensure_client()
        try:
            watch = await client.watch_prefix(_encode(prefix), start_revision=start_revision)
        except aetcd.exceptions.ClientError as exc:
            raise StoreUnavailable(exc) from exc
        return _EtcdWatch(watch)

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()
