"""Cached view of one coordination store prefix as a configuration tree.

Store keys below the prefix map to configuration paths by splitting the
remainder on ``/``: with prefix ``/services/billing/`` the key
``/services/billing/db/port`` holding ``5432`` becomes ``{"db": {"port":
5432}}``. Values are decoded as JSON when they parse (``99``, ``true``,
``{"a": 1}``) and kept as UTF-8 text otherwise. A custom ``decoder`` (for
example a YAML document parser) replaces that rule for every value,
and mapping documents merge into the tree at their key's path.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Callable, Iterable

from ..domain.errors import ParseError
from ..domain.events import EventKind, StoredValue, WatchEvent
from ..domain.value import ConfigSource, Origin, normalize_value
from ..observability import log_error


class RemoteTree:
    """Key/value cache for one prefix with per-key applied revisions.

    ``revision`` is the highest store revision seen and serves as the resume
    point for a new subscription. Redelivery is judged per key, because every
    key written by one transaction shares the same revision.

    Examples
    --------
    >>> tree = RemoteTree("/cfg/")
    >>> tree.apply(WatchEvent.put("/cfg/a/b", b"99", 7))
    True
    >>> tree.apply(WatchEvent.put("/cfg/a/b", b"99", 7))
    False
    >>> tree.apply(WatchEvent.put("/cfg/a/c", b"1", 7))
    True
    >>> tree.tree()
    {'a': {'b': 99, 'c': 1}}
    """

    def __init__(
        self,
        prefix: str,
        *,
        separator: str = "/",
        decoder: Callable[[bytes], Any] | None = None,
    ) -> None:
        self.prefix = prefix
        self.separator = separator
        self._decoder = decoder or decode_scalar
        self.revision = 0
        self._floor = 0
        self._entries: dict[str, bytes] = {}
        # kept for deleted keys too, so a redelivered older put cannot resurrect them
        self._revisions: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def reset(self, values: Iterable[StoredValue], revision: int) -> bool:
        """Replace the cache with an authoritative range read; ``True`` when content changed.

        Events at or below *revision* are already reflected in *values* and
        are ignored afterwards.
        """

        entries: dict[str, bytes] = {}
        revisions: dict[str, int] = {}
        for stored in values:
            relative = self._relative(stored.key)
            if relative is not None:
                entries[relative] = stored.value
                revisions[relative] = stored.revision
        changed = entries != self._entries
        self._entries = entries
        self._revisions = revisions
        self._floor = revision
        self.revision = max(self.revision, revision)
        return changed

    def apply(self, event: WatchEvent) -> bool:
        """Apply *event*; ``True`` when the cached content changed.

        An event is a redelivery when its revision is not newer than the last
        one applied to the same key (or than the last range read), so applying
        the same event twice equals applying it once.
        """

        relative = self._relative(event.key)
        if relative is None:
            return False
        if event.revision <= self._floor or event.revision <= self._revisions.get(relative, 0):
            return False
        self._revisions[relative] = event.revision
        self.revision = max(self.revision, event.revision)
        if event.kind is EventKind.DELETE:
            return self._entries.pop(relative, None) is not None
        assert event.value is not None
        if self._entries.get(relative) == event.value:
            return False
        self._entries[relative] = event.value
        return True

    def tree(self) -> dict[str, Any]:
        """Assemble the nested configuration tree; deterministic in key order."""

        result: dict[str, Any] = {}
        for relative in sorted(self._entries):
            try:
                value = self._decoder(self._entries[relative])
            except ParseError as exc:
                log_error(
                    "remote_value_invalid",
                    layer="remote",
                    path=self.prefix + relative,
                    format=exc.format,
                    line=exc.line,
                    error=exc.message,
                )
                continue
            segments = [segment for segment in relative.split(self.separator) if segment]
            _assign(result, segments, value)
        return result

    def source(self, *, priority: int | None = None, name: str = "") -> ConfigSource:
        """Return the cached tree as a remote :class:`ConfigSource`."""

        return ConfigSource.of(
            Origin.REMOTE,
            self.tree(),
            priority=priority,
            name=name or f"remote:{self.prefix}",
            path=self.prefix,
        )

    def _relative(self, key: str) -> str | None:
        if not key.startswith(self.prefix):
            return None
        return key[len(self.prefix) :]


def decode_scalar(raw: bytes) -> Any:
    """Decode a store value as JSON, falling back to UTF-8 text.

    Examples
    --------
    >>> decode_scalar(b"99"), decode_scalar(b"true"), decode_scalar(b"plain text")
    (99, True, 'plain text')
    """

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError("text", None, f"value is not valid UTF-8: {exc}") from exc
    try:
        return normalize_value(json.loads(text))
    except ValueError:
        return text


def _assign(target: dict[str, Any], segments: list[str], value: Any) -> None:
    """Place *value* at *segments*; mappings merge, anything else replaces."""

    if not segments:
        if isinstance(value, Mapping):
            _merge_into(target, value)
        return
    cursor = target
    for segment in segments[:-1]:
        child = cursor.get(segment)
        if not isinstance(child, dict):
            child = {}
            cursor[segment] = child
        cursor = child
    last = segments[-1]
    existing = cursor.get(last)
    if isinstance(existing, dict) and isinstance(value, Mapping):
        _merge_into(existing, value)
    else:
        cursor[last] = _thaw(value)


def _merge_into(target: dict[str, Any], incoming: Mapping[str, Any]) -> None:
    for key, value in incoming.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            _merge_into(existing, value)
        else:
            target[key] = _thaw(value)


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    return value
