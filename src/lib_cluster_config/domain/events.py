"""Coordination store records and watch events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class EventKind(str, Enum):
    PUT = "put"
    DELETE = "delete"


@dataclass(frozen=True)
class StoredValue:
    """A key/value pair read from the store with its modification revision."""

    key: str
    value: bytes
    revision: int


@dataclass(frozen=True)
class WatchEvent:
    """One change under a watched prefix.

    ``value`` is ``None`` for deletions. ``revision`` is the store revision of
    the change; events for one prefix arrive in revision order.
    """

    key: str
    kind: EventKind
    value: bytes | None
    revision: int

    @classmethod
    def put(cls, key: str, value: bytes | str, revision: int) -> WatchEvent:
        payload = value.encode("utf-8") if isinstance(value, str) else value
        return cls(key=key, kind=EventKind.PUT, value=payload, revision=revision)

    @classmethod
    def delete(cls, key: str, revision: int) -> WatchEvent:
        return cls(key=key, kind=EventKind.DELETE, value=None, revision=revision)


@dataclass(frozen=True)
class CaughtUp:
    """Marker emitted once a subscription is established.

    ``revision`` is the first revision the subscription will deliver.
    """

    revision: int | None


WatchItem = Union[WatchEvent, CaughtUp]
