"""Blocking façade over an asynchronous coordination store driver.

Purpose
-------
Service code that is not part of an asyncio program still needs etcd reads,
writes, and watches. :class:`CoordinationClient` owns one background thread
running one event loop for its whole lifetime; every blocking call submits a
coroutine to that loop with :func:`asyncio.run_coroutine_threadsafe` and waits
for the result with a bounded timeout. Callers never see the loop.

Contents
--------
* :class:`CoordinationClient` – ``get``/``get_prefix``/``put``/``delete`` and
  ``watch_prefix`` plus lifecycle management.
* :class:`BlockingWatch` – lazy, blocking iterator over one subscription.

Rules
-----
* No additional threads or loops are created per call.
* A blocking call made from the loop thread raises ``RuntimeError`` instead
  of deadlocking.
* Timeouts and transport errors surface as :class:`StoreUnavailable`; single
  calls are retried with backoff, conditional writes are not.
* Interrupting a waiting caller cancels the submitted coroutine.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import queue
import threading
import time
from typing import Any, Awaitable, Callable, Iterator, TypeVar

from ...application.ports import StoreDriver
from ...application.retry import Backoff
from ...domain.errors import NotFound, StoreError, StoreUnavailable
from ...domain.events import CaughtUp, StoredValue, WatchItem
from ...observability import log_debug, log_info, log_warning
from ..env.store import DEFAULT_TIMEOUT, StoreSettings

T = TypeVar("T")

_END = object()


class BlockingWatch:
    """Blocking iterator over one prefix subscription.

    The first item is a :class:`CaughtUp` marker once the subscription is
    established, followed by :class:`WatchEvent` items in revision order.
    Iteration stops after :meth:`cancel`. If the store drops the subscription
    the iterator raises :class:`StoreUnavailable` once and is then exhausted.
    """

    def __init__(self, client: CoordinationClient, prefix: str, start_revision: int | None) -> None:
        self.prefix = prefix
        self.start_revision = start_revision
        self._client = client
        self._items: queue.Queue[object] = queue.Queue()
        self._cancelled = threading.Event()
        self._finished = False
        self._future = client._spawn(self._pump())

    async def _pump(self) -> None:
        watch = None
        try:
            watch = await self._client._driver.watch_prefix(self.prefix, start_revision=self.start_revision)
            self._items.put(CaughtUp(self.start_revision))
            async for event in watch:
                self._items.put(event)
            if not self._cancelled.is_set():
                self._items.put(StoreUnavailable(f"watch on {self.prefix!r} closed by the store"))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - handed to the consumer as the terminal element
            self._items.put(exc)
        finally:
            if watch is not None:
                try:
                    await watch.cancel()
                except StoreError as exc:
                    log_debug("watch_release_failed", layer="remote", path=self.prefix, error=str(exc))
            self._items.put(_END)

    def __iter__(self) -> Iterator[WatchItem]:
        return self

    def __next__(self) -> WatchItem:
        if self._finished or self._cancelled.is_set():
            raise StopIteration
        item = self._items.get()
        if item is _END or self._cancelled.is_set():
            self._finished = True
            raise StopIteration
        if isinstance(item, BaseException):
            self._finished = True
            raise item
        return item  # type: ignore[return-value]

    def cancel(self) -> None:
        """End the subscription and release it on the store; idempotent."""

        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._future.cancel()
        self._items.put(_END)
        self._client._forget(self)
        log_debug("watch_cancelled", layer="remote", path=self.prefix)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __enter__(self) -> BlockingWatch:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


class CoordinationClient:
    """Synchronous coordination store client.

    Parameters
    ----------
    driver:
        Asynchronous :class:`StoreDriver`; all its coroutines run on the
        client's loop thread.
    timeout:
        Seconds a blocking call waits before raising :class:`StoreUnavailable`.
    retries:
        Additional attempts for retryable single calls.
    backoff:
        Delay schedule between attempts.
    """

    def __init__(
        self,
        driver: StoreDriver,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = 3,
        backoff: Backoff | None = None,
        name: str = "lib-cluster-config-store",
    ) -> None:
        self._driver = driver
        self._timeout = timeout
        self._retries = retries
        self._backoff = backoff or Backoff()
        self._lock = threading.Lock()
        self._watches: set[BlockingWatch] = set()
        self._closed = False
        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run_loop, name=name, daemon=True)
        self._thread.start()
        self._ready.wait()
        log_debug("store_client_started", layer="remote", path=None, thread=name)

    @classmethod
    def connect(cls, settings: StoreSettings, **kwargs: Any) -> CoordinationClient:
        """Create a client for the etcd cluster described by *settings*."""

        from .etcd import AsyncEtcdDriver

        kwargs.setdefault("timeout", settings.timeout)
        return cls(AsyncEtcdDriver(settings), **kwargs)

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, key: str) -> tuple[bytes, int]:
        """Return ``(value, revision)`` for *key*.

        Raises
        ------
        NotFound
            When the key does not exist.
        StoreUnavailable
            When the store cannot be reached after all retries.
        """

        stored = self._run("get", key, lambda: self._driver.get(key))
        if stored is None:
            raise NotFound(f"Store key not found: {key}")
        return stored.value, stored.revision

    def get_prefix(self, prefix: str) -> tuple[list[StoredValue], int]:
        """Return every value under *prefix* and the store revision of the read."""

        return self._run("get_prefix", prefix, lambda: self._driver.get_prefix(prefix))

    def put(self, key: str, value: bytes | str, *, prev_revision: int | None = None) -> int:
        """Write *value* and return the new store revision.

        With *prev_revision* the write only succeeds while the key's current
        modification revision equals it (``0`` requires the key to be absent);
        otherwise :class:`PreconditionFailed` is raised. Conditional writes are
        never retried.
        """

        payload = value.encode("utf-8") if isinstance(value, str) else value
        return self._run(
            "put",
            key,
            lambda: self._driver.put(key, payload, prev_revision=prev_revision),
            retry=prev_revision is None,
        )

    def delete(self, key: str) -> int:
        """Delete *key* and return the new store revision; :class:`NotFound` when absent."""

        revision = self._run("delete", key, lambda: self._driver.delete(key))
        if revision is None:
            raise NotFound(f"Store key not found: {key}")
        return revision

    def watch_prefix(self, prefix: str, *, start_revision: int | None = None) -> BlockingWatch:
        """Open a fresh subscription on *prefix*, optionally replaying from *start_revision*."""

        self._ensure_usable()
        watch = BlockingWatch(self, prefix, start_revision)
        with self._lock:
            self._watches.add(watch)
        log_debug("watch_opened", layer="remote", path=prefix, start_revision=start_revision)
        return watch

    def close(self) -> None:
        """Cancel subscriptions, close the driver, and stop the loop thread; idempotent."""

        self._guard_thread()
        with self._lock:
            if self._closed:
                return
            self._closed = True
            watches = list(self._watches)
        for watch in watches:
            watch.cancel()
        future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
        try:
            future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            log_warning("store_client_close_timeout", layer="remote", path=None, timeout=self._timeout)
        except StoreError as exc:
            log_warning("store_client_close_failed", layer="remote", path=None, error=str(exc))
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=self._timeout)
        log_info("store_client_closed", layer="remote", path=None)

    def __enter__(self) -> CoordinationClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    async def _shutdown(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self._driver.close()

    def _spawn(self, coro: Awaitable[T]) -> concurrent.futures.Future[T]:
        self._ensure_usable()
        return asyncio.run_coroutine_threadsafe(coro, self._loop)  # type: ignore[arg-type]

    def _forget(self, watch: BlockingWatch) -> None:
        with self._lock:
            self._watches.discard(watch)

    def _guard_thread(self) -> None:
        if threading.current_thread() is self._thread:
            raise RuntimeError("blocking store call issued from the store event loop would deadlock")

    def _ensure_usable(self) -> None:
        self._guard_thread()
        if self._closed:
            raise StoreUnavailable("client is closed")

    def _wait(self, future: concurrent.futures.Future[T], operation: str) -> T:
        try:
            return future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise StoreUnavailable(f"{operation} timed out after {self._timeout}s") from exc
        except concurrent.futures.CancelledError as exc:
            raise StoreUnavailable(f"{operation} was cancelled") from exc
        except BaseException:
            future.cancel()
            raise

    def _run(
        self,
        operation: str,
        key: str,
        factory: Callable[[], Awaitable[T]],
        *,
        retry: bool = True,
    ) -> T:
        attempt = 0
        while True:
            try:
                self._ensure_usable()
                return self._wait(self._spawn(factory()), operation)
            except StoreUnavailable as exc:
                if not retry or attempt >= self._retries or self._closed:
                    log_warning("store_call_failed", layer="remote", path=key, operation=operation, error=str(exc))
                    raise
                delay = self._backoff.delay(attempt)
                attempt += 1
                log_debug(
                    "store_call_retry",
                    layer="remote",
                    path=key,
                    operation=operation,
                    attempt=attempt,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                time.sleep(delay)
