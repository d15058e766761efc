"""Application-layer merge policy.

Purpose
-------
Overlay prioritised configuration sources into one tree while tracking which
source supplied every leaf. Free of I/O so the watch dispatcher can re-run it
on every remote change.

Contents
    - ``merge_sources``: public entry point; stable priority sort then a simple
      loop over sources.
    - ``_merge_mapping``: recursive stanza applying one source.
    - ``_set_leaf`` / ``_merge_branch`` / ``_clear_branch``: helpers narrating
      how provenance changes when values are replaced.

Policy
------
* Sources are applied in ascending priority; equal priorities keep input order.
* Mappings merge deeply: union of keys, recursion on shared keys.
* Scalars and sequences replace the previous value outright; sequences never
  concatenate.
* A mapping meeting a non-mapping at the same key is replaced by the
  higher-priority value. This silently drops the lower-priority structure;
  pass ``conflict="error"`` to raise :class:`MergeConflict` instead.
* An empty mapping over an existing mapping changes nothing.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable, Literal

from ..domain.errors import MergeConflict
from ..domain.value import ConfigSource

ConflictPolicy = Literal["replace", "error"]


def merge_sources(
    sources: Iterable[ConfigSource],
    *,
    conflict: ConflictPolicy = "replace",
) -> tuple[dict[str, Any], dict[str, dict[str, Any]]]:
    """Merge *sources* honouring priority and return ``(data, provenance)``.

    Parameters
    ----------
    sources:
        Sources in any order; they are stably sorted by ``priority``.
    conflict:
        ``"replace"`` (default) or ``"error"`` for mapping/non-mapping
        collisions.

    Returns
    -------
    tuple[dict[str, Any], dict[str, dict[str, Any]]]
        Mutable merged tree and provenance mapping dotted keys to
        ``{"layer", "path", "key"}``.

    Examples
    --------
    >>> from lib_cluster_config.domain.value import Origin
    >>> merged, meta = merge_sources([
    ...     ConfigSource.of(Origin.REMOTE, {"a": {"c": 2}}),
    ...     ConfigSource.of(Origin.FILE, {"a": {"b": 1}}),
    ... ])
    >>> merged, meta["a.c"]["layer"]
    ({'a': {'b': 1, 'c': 2}}, 'remote')
    """

    if conflict not in ("replace", "error"):
        raise ValueError(f"Unknown conflict policy: {conflict!r}")
    merged: dict[str, Any] = {}
    meta: dict[str, dict[str, Any]] = {}
    for source in sorted(sources, key=lambda item: item.priority):
        _merge_mapping(merged, meta, source.tree, source, [], conflict)
    return merged, meta


def _merge_mapping(
    target: dict[str, Any],
    meta: dict[str, dict[str, Any]],
    incoming: Mapping[str, Any],
    source: ConfigSource,
    segments: list[str],
    conflict: ConflictPolicy,
) -> None:
    """Recursively merge ``incoming`` into ``target`` while recording provenance."""

    for key, value in incoming.items():
        dotted = ".".join([*segments, key])
        existing = target.get(key)
        if key in target and isinstance(existing, Mapping) != isinstance(value, Mapping):
            if conflict == "error":
                raise MergeConflict(dotted, source.name)
        if isinstance(value, Mapping):
            _merge_branch(target, meta, key, value, dotted, source, segments, conflict)
        else:
            _set_leaf(target, meta, key, value, dotted, source)


def _merge_branch(
    target: dict[str, Any],
    meta: dict[str, dict[str, Any]],
    key: str,
    value: Mapping[str, Any],
    dotted: str,
    source: ConfigSource,
    segments: list[str],
    conflict: ConflictPolicy,
) -> None:
    """Merge mapping ``value`` into ``target[key]`` and recurse."""

    existing = target.get(key)
    if isinstance(existing, dict):
        container = existing
    else:
        _clear_branch(meta, dotted)
        container = {}
        target[key] = container
    _merge_mapping(container, meta, value, source, [*segments, key], conflict)


def _set_leaf(
    target: dict[str, Any],
    meta: dict[str, dict[str, Any]],
    key: str,
    value: Any,
    dotted: str,
    source: ConfigSource,
) -> None:
    """Assign a scalar or sequence and update provenance for ``dotted``."""

    _clear_branch(meta, dotted)
    target[key] = value
    meta[dotted] = {"layer": source.name, "path": source.path, "key": dotted}


def _clear_branch(meta: dict[str, dict[str, Any]], prefix: str) -> None:
    """Remove provenance entries that belong to *prefix* or its descendants."""

    for meta_key in [key for key in meta if key == prefix or key.startswith(prefix + ".")]:
        del meta[meta_key]
