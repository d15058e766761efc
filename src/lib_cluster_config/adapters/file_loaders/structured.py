"""Structured configuration loaders.

Purpose
-------
Convert YAML, TOML, and JSON documents into the shared value model. The
adapters are small wrappers around ``yaml.safe_load``/``tomllib``/``json`` so
error reporting, normalisation, and logging live in one place, and nothing
downstream ever sees a format-specific type.

Contents
--------
* :class:`Format` – the supported textual formats.
* :func:`load` – pure parse of bytes or text in a given format.
* :func:`load_source` / :func:`load_file` – build a :class:`ConfigSource`.
* :func:`detect_format` – explicit hint or file extension to :class:`Format`.
* :class:`BaseFileLoader` and the three format loaders – path based readers
  that raise :class:`NotFound` for missing files.

System Role
-----------
Used by the composition root for file layers and by the remote tree when
store values hold whole documents.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

try:  # Python >= 3.11
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    import tomli as tomllib  # type: ignore[no-redef]

import yaml

from ...domain.errors import NotFound, ParseError, UnsupportedFormat
from ...domain.value import ConfigSource, Origin, freeze_value, normalize_value
from ...observability import log_debug, log_error


class Format(str, Enum):
    YAML = "yaml"
    TOML = "toml"
    JSON = "json"


_SUFFIXES = {
    ".yaml": Format.YAML,
    ".yml": Format.YAML,
    ".toml": Format.TOML,
    ".json": Format.JSON,
}

_TOML_LINE = re.compile(r"\(at line (\d+)")


def detect_format(path: str | Path, hint: str | Format | None = None) -> Format:
    """Return the format for *path*, preferring an explicit *hint*.

    Examples
    --------
    >>> detect_format("service.yml")
    <Format.YAML: 'yaml'>
    >>> detect_format("service.conf", hint="toml")
    <Format.TOML: 'toml'>
    >>> detect_format("service.ini")
    Traceback (most recent call last):
    ...
    lib_cluster_config.domain.errors.UnsupportedFormat: Unsupported configuration format: 'ini'
    """

    if hint is not None:
        try:
            return Format(str(hint.value if isinstance(hint, Format) else hint).lower().lstrip("."))
        except ValueError as exc:
            raise UnsupportedFormat(f"Unsupported configuration format: {hint!r}") from exc
    suffix = Path(path).suffix.lower()
    if not suffix:
        raise UnsupportedFormat(f"Cannot determine configuration format of {path}")
    try:
        return _SUFFIXES[suffix]
    except KeyError as exc:
        raise UnsupportedFormat(f"Unsupported configuration format: {suffix.lstrip('.')!r}") from exc


def load(format: Format | str, data: bytes | str) -> Any:
    """Parse *data* and return a frozen configuration value.

    Pure: no I/O, no logging. Any root type is accepted; use
    :func:`load_source` when a mapping is required.

    Examples
    --------
    >>> load("json", '{"a": {"b": [1, 2]}}')["a"]["b"]
    (1, 2)
    >>> load("toml", "[a]\\nb = [1, 2]")["a"]["b"]
    (1, 2)
    >>> load("yaml", "a:\\n  b: [1, 2]")["a"]["b"]
    (1, 2)
    """

    fmt = Format(format)
    parsed = _PARSERS[fmt](data)
    try:
        return freeze_value(normalize_value(parsed))
    except TypeError as exc:
        raise ParseError(fmt.value, None, str(exc)) from exc


def load_source(
    format: Format | str,
    data: bytes | str,
    *,
    origin: Origin = Origin.FILE,
    priority: int | None = None,
    name: str = "",
    path: str | None = None,
) -> ConfigSource:
    """Parse *data* into a :class:`ConfigSource`; the document root must be a mapping.

    An empty document yields an empty mapping.
    """

    fmt = Format(format)
    value = load(fmt, data)
    if value is None:
        value = {}
    if not isinstance(value, Mapping):
        raise ParseError(fmt.value, None, f"document root must be a mapping, got {type(value).__name__}")
    return ConfigSource.of(origin, value, priority=priority, name=name, path=path)


def load_file(
    path: str | Path,
    *,
    format: Format | str | None = None,
    priority: int | None = None,
    name: str = "",
) -> ConfigSource:
    """Read *path* and return a file :class:`ConfigSource`.

    Raises
    ------
    NotFound
        When the file does not exist.
    ParseError
        When the document is malformed or not a mapping.
    """

    fmt = detect_format(path, format)
    loader = _LOADERS[fmt]
    tree = loader.load(str(path))
    return ConfigSource.of(Origin.FILE, tree, priority=priority, name=name or "file", path=str(path))


def _to_text(data: bytes | str, fmt: Format) -> str:
    if isinstance(data, str):
        return data
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(fmt.value, None, f"document is not valid UTF-8: {exc}") from exc


def _parse_json(data: bytes | str) -> Any:
    try:
        return json.loads(_to_text(data, Format.JSON))
    except json.JSONDecodeError as exc:
        raise ParseError(Format.JSON.value, exc.lineno, exc.msg) from exc


def _parse_toml(data: bytes | str) -> Any:
    try:
        return tomllib.loads(_to_text(data, Format.TOML))
    except tomllib.TOMLDecodeError as exc:
        message = str(exc)
        line = getattr(exc, "lineno", None)
        if line is None:
            match = _TOML_LINE.search(message)
            line = int(match.group(1)) if match else None
        raise ParseError(Format.TOML.value, line, message) from exc


def _parse_yaml(data: bytes | str) -> Any:
    try:
        return yaml.safe_load(_to_text(data, Format.YAML))
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        line = mark.line + 1 if mark is not None else None
        problem = getattr(exc, "problem", None) or str(exc)
        raise ParseError(Format.YAML.value, line, problem) from exc


_PARSERS = {
    Format.JSON: _parse_json,
    Format.TOML: _parse_toml,
    Format.YAML: _parse_yaml,
}


class BaseFileLoader:
    """Common utilities shared by the structured file loaders."""

    format: Format

    def _read(self, path: str) -> bytes:
        """Read *path* as bytes, raising :class:`NotFound` when the file is missing."""

        file_path = Path(path)
        if not file_path.is_file():
            raise NotFound(f"Configuration file not found: {path}")
        payload = file_path.read_bytes()
        log_debug("config_file_read", path=path, layer="file", size=len(payload))
        return payload

    def load(self, path: str) -> Mapping[str, Any]:
        """Return the frozen mapping stored in the file at *path*.

        Side Effects
        ------------
        Emits ``config_file_loaded`` debug events and ``config_file_invalid``
        error events.
        """

        payload = self._read(path)
        try:
            source = load_source(self.format, payload, path=path)
        except ParseError as exc:
            log_error(
                "config_file_invalid",
                layer="file",
                path=path,
                format=self.format.value,
                line=exc.line,
                error=exc.message,
            )
            raise
        log_debug("config_file_loaded", layer="file", path=path, format=self.format.value)
        return source.tree


class TOMLFileLoader(BaseFileLoader):
    """Load TOML documents using the standard library parser."""

    format = Format.TOML


class JSONFileLoader(BaseFileLoader):
    """Load JSON documents."""

    format = Format.JSON


class YAMLFileLoader(BaseFileLoader):
    """Load YAML documents with PyYAML's safe loader."""

    format = Format.YAML


_LOADERS: dict[Format, BaseFileLoader] = {
    Format.TOML: TOMLFileLoader(),
    Format.JSON: JSONFileLoader(),
    Format.YAML: YAMLFileLoader(),
}
