"""Format-agnostic configuration values and sources.

Purpose
-------
Define the value model every loader produces and the merge policy consumes:
``None``, ``bool``, ``int``, ``float``, ``str``, sequences, and string-keyed
mappings. Frozen values use ``tuple`` for sequences and ``MappingProxyType``
for mappings, so a tree handed to a reader can never change underneath it.

Contents
--------
* :class:`Origin` – the named precedence layers and their default priorities.
* :class:`ConfigSource` – one prioritised tree entering the merge.
* :func:`freeze_value` / :func:`thaw_value` – convert between frozen and
  mutable representations.
* :func:`normalize_value` – coerce parser output into the value model.
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Mapping, Set
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Union

ConfigValue = Union[None, bool, int, float, str, tuple, Mapping[str, Any]]


class Origin(str, Enum):
    """Precedence layers, lowest first (Default < File < Environment < Remote)."""

    DEFAULT = "default"
    FILE = "file"
    ENVIRONMENT = "env"
    REMOTE = "remote"

    @property
    def default_priority(self) -> int:
        """Return the priority used when a source does not specify one.

        Examples
        --------
        >>> [origin.default_priority for origin in Origin]
        [0, 10, 15, 20]
        """

        return _DEFAULT_PRIORITIES[self]


_DEFAULT_PRIORITIES = {
    Origin.DEFAULT: 0,
    Origin.FILE: 10,
    Origin.ENVIRONMENT: 15,
    Origin.REMOTE: 20,
}


@dataclass(frozen=True)
class ConfigSource:
    """A configuration tree tagged with its origin and precedence.

    Why
    ----
    The merge policy needs to know which tree wins a collision and which layer
    to report in provenance metadata.

    Attributes
    ----------
    origin:
        Layer the tree came from.
    priority:
        Higher wins on collisions; equal priorities keep input order.
    tree:
        Frozen mapping (see :func:`freeze_value`).
    name:
        Stable identifier used for provenance and for replacing the source
        later (defaults to the origin value).
    path:
        File path or store prefix that produced the tree, if any.

    Examples
    --------
    >>> src = ConfigSource.of(Origin.FILE, {"a": {"b": [1, 2]}})
    >>> src.priority, src.name, src.tree["a"]["b"]
    (10, 'file', (1, 2))
    """

    origin: Origin
    priority: int
    tree: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    name: str = ""
    path: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tree", freeze_value(dict(self.tree)))
        if not self.name:
            object.__setattr__(self, "name", self.origin.value)

    @classmethod
    def of(
        cls,
        origin: Origin,
        tree: Mapping[str, Any],
        *,
        priority: int | None = None,
        name: str = "",
        path: str | None = None,
    ) -> ConfigSource:
        """Build a source using the origin's default priority unless one is given."""

        resolved = origin.default_priority if priority is None else priority
        return cls(origin=origin, priority=resolved, tree=tree, name=name, path=path)


def freeze_value(value: Any) -> Any:
    """Return an immutable copy of *value*.

    Examples
    --------
    >>> frozen = freeze_value({"a": [1, {"b": 2}]})
    >>> frozen["a"]
    (1, mappingproxy({'b': 2}))
    """

    if isinstance(value, Mapping):
        return MappingProxyType({str(key): freeze_value(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_value(item) for item in value)
    return value


def thaw_value(value: Any) -> Any:
    """Return a mutable deep copy of a frozen *value* (``dict`` and ``list``).

    Examples
    --------
    >>> thaw_value(freeze_value({"a": (1, 2)}))
    {'a': [1, 2]}
    """

    if isinstance(value, Mapping):
        return {key: thaw_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw_value(item) for item in value]
    return value


def normalize_value(value: Any) -> Any:
    """Coerce parser output into the shared value model.

    Dates and times become ISO-8601 strings, sets become sorted lists, and
    mapping keys become strings so TOML, YAML, and JSON documents with the same
    content produce equal trees.

    Examples
    --------
    >>> normalize_value({1: _dt.date(2024, 1, 2), "tags": {"b", "a"}})
    {'1': '2024-01-02', 'tags': ['a', 'b']}
    """

    if isinstance(value, Mapping):
        return {str(key): normalize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]
    if isinstance(value, Set):
        return sorted((normalize_value(item) for item in value), key=repr)
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    raise TypeError(f"Unsupported configuration value type: {type(value).__name__}")
