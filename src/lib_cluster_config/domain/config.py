"""Domain-level configuration snapshot.

Purpose
-------
Anchor the immutable :class:`ConfigSnapshot` value object that carries merged
configuration, provenance, and a version counter through the system. This
module belongs to the domain layer and contains no I/O.

Contents
--------
* :class:`SourceInfo` – typed metadata describing where a key came from.
* :class:`ConfigSnapshot` – ``Mapping`` implementation with dotted lookups,
  provenance, and export helpers.
* :data:`EMPTY_SNAPSHOT` – canonical empty instance at version ``0``.

System Role
-----------
Readers hold a snapshot for as long as they like; publishers never mutate one
and instead replace the reference held by
:class:`lib_cluster_config.application.snapshots.SnapshotHandle`. A reader
therefore always sees one complete, internally consistent tree.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator, TypedDict, TypeVar, overload

from .errors import KeyNotFound
from .value import freeze_value, thaw_value


class SourceInfo(TypedDict):
    """Describe the origin of a resolved configuration key.

    Attributes
    ----------
    layer:
        Name of the winning source (``"default"``, ``"file"``, ``"env"``,
        ``"remote"`` or a custom source name).
    path:
        File path or store prefix that produced the key, ``None`` for
        in-memory sources such as environment variables.
    key:
        Fully qualified dotted key (for example ``"service.timeout"``).
    """

    layer: str
    path: str | None
    key: str


T = TypeVar("T")

_MISSING: Any = object()


@dataclass(frozen=True)
class ConfigSnapshot(Mapping[str, Any]):
    """Immutable, versioned merged configuration.

    Why
    ----
    Callers require a read-only structure that behaves like a dictionary,
    explains precedence outcomes, and can be swapped atomically by the watch
    machinery without locking readers.

    Parameters
    ----------
    _data:
        Merged tree; frozen deeply during initialisation.
    _meta:
        Mapping from dotted keys to :class:`SourceInfo`.
    version:
        Monotonically increasing publication counter.

    Examples
    --------
    >>> snap = ConfigSnapshot(
    ...     {"service": {"timeout": 30}},
    ...     {"service.timeout": {"layer": "file", "path": "/etc/demo.toml", "key": "service.timeout"}},
    ...     version=3,
    ... )
    >>> snap.get("service.timeout"), snap.version
    (30, 3)
    >>> snap.origin("service.timeout")["layer"]
    'file'
    """

    _data: Mapping[str, Any]
    _meta: Mapping[str, SourceInfo]
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "_data", freeze_value(dict(self._data)))
        object.__setattr__(self, "_meta", MappingProxyType(dict(self._meta)))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    @property
    def data(self) -> Mapping[str, Any]:
        """Return the frozen merged tree."""

        return self._data

    @property
    def provenance(self) -> Mapping[str, SourceInfo]:
        """Return the frozen provenance mapping."""

        return self._meta

    @overload
    def get(self, key: str) -> Any:  # type: ignore[override]
        ...

    @overload
    def get(self, key: str, default: T) -> Any | T:  # type: ignore[override]
        ...

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """Resolve *key* as a dotted path.

        Unlike :meth:`dict.get`, a missing path raises :class:`KeyNotFound`
        unless the caller passes an explicit ``default``; a silently returned
        ``None`` would be indistinguishable from a configured null.

        Examples
        --------
        >>> snap = ConfigSnapshot({"a": {"b": 1}}, {})
        >>> snap.get("a.b")
        1
        >>> snap.get("a.c", "fallback")
        'fallback'
        >>> snap.get("a.c")
        Traceback (most recent call last):
        ...
        lib_cluster_config.domain.errors.KeyNotFound: Configuration key not found: a.c
        """

        found, value = _resolve_dotted_path(self._data, key)
        if found:
            return value
        if default is _MISSING:
            raise KeyNotFound(key)
        return default

    def contains_path(self, key: str) -> bool:
        """Return ``True`` when the dotted *key* resolves."""

        return _resolve_dotted_path(self._data, key)[0]

    def origin(self, key: str) -> SourceInfo | None:
        """Return provenance for *key* or ``None`` when no source produced it."""

        return self._meta.get(key)

    def as_dict(self) -> dict[str, Any]:
        """Construct a mutable deep copy (``dict``/``list``) of the tree.

        Examples
        --------
        >>> snap = ConfigSnapshot({"db": {"ports": [1, 2]}}, {})
        >>> clone = snap.as_dict()
        >>> clone["db"]["ports"].append(3)
        >>> snap.get("db.ports")
        (1, 2)
        """

        return thaw_value(self._data)

    def to_json(self, *, indent: int | None = None) -> str:
        """Serialise the tree to JSON.

        Examples
        --------
        >>> ConfigSnapshot({"service": {"timeout": 5}}, {}).to_json()
        '{"service":{"timeout":5}}'
        """

        return json.dumps(self.as_dict(), indent=indent, separators=(",", ":"), ensure_ascii=False)

    def subtree(self, prefix: str) -> Any:
        """Return the value under dotted *prefix* (whole tree for ``""``), or ``None``."""

        if not prefix:
            return self._data
        return _resolve_dotted_path(self._data, prefix)[1]

    def with_version(self, version: int) -> ConfigSnapshot:
        """Return a copy carrying *version*; data and provenance are shared."""

        return ConfigSnapshot(self._data, self._meta, version)


def _resolve_dotted_path(source: Mapping[str, Any], dotted: str) -> tuple[bool, Any]:
    """Resolve *dotted* within *source* returning ``(found, value)``."""

    current: Any = source
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return False, None
        current = current[part]
    return True, current


#: Shared empty configuration used before any source has been merged.
EMPTY_SNAPSHOT = ConfigSnapshot(MappingProxyType({}), MappingProxyType({}), 0)
