"""Shared fixtures: an in-memory coordination store, a client bound to it,
fast retry schedules, and a controllable millisecond clock."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

import pytest

from lib_cluster_config.adapters.store.bridge import CoordinationClient
from lib_cluster_config.adapters.store.memory import InMemoryStoreDriver
from lib_cluster_config.application.retry import Backoff

FAST_BACKOFF = Backoff(base=0.001, multiplier=2.0, max_sleep=0.01, jitter=0.0)


class FakeClock:
    """Millisecond clock driven by the test; ``sleep`` advances it."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> None:
        self.now += ms

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(1, round(seconds * 1000))


@pytest.fixture()
def fast_backoff() -> Backoff:
    return FAST_BACKOFF


@pytest.fixture()
def memory_store() -> InMemoryStoreDriver:
    return InMemoryStoreDriver()


@pytest.fixture()
def store_client(memory_store: InMemoryStoreDriver) -> Iterator[CoordinationClient]:
    client = CoordinationClient(memory_store, timeout=2.0, retries=3, backoff=FAST_BACKOFF)
    try:
        yield client
    finally:
        client.close()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def write_file(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write *body* to *name* below ``tmp_path`` and return the path."""

    def _write(name: str, body: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
        return path

    return _write
