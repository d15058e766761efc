"""Domain-level exception hierarchy.

Purpose
-------
Expose the stable error taxonomy shared by adapters, the application layer,
the composition root, and consuming services. The hierarchy lives in the
domain layer so outer layers depend on it and never the other way round.

Contents
--------
* :class:`ConfigError` – umbrella base class for every library failure.
* :class:`InvalidFormat` / :class:`ParseError` – malformed source documents.
* :class:`UnsupportedFormat` – a file whose format cannot be determined.
* :class:`ValidationError` / :class:`MergeConflict` – semantic failures.
* :class:`NotFound` / :class:`KeyNotFound` – expected absences.
* :class:`StoreError`, :class:`StoreUnavailable`,
  :class:`PreconditionFailed` – coordination store failures.
* :class:`ClockSkewFatal` – the identifier generator refuses to continue.
* :class:`LayerLoadError` – a static layer failed while building a snapshot.

System Role
-----------
Transient store errors are retried by the component that owns the retry
policy (the coordination client for single calls, the watch dispatcher for
subscriptions). Parse and shape errors indicate a static defect and are never
retried. Callers catch :class:`ConfigError` to handle all failures uniformly.
"""

from __future__ import annotations


class ConfigError(Exception):
    """Base type for all exceptions emitted by ``lib_cluster_config``.

    Why
    ----
    Provide a single catch-all type for consumers that do not need fine-grained
    handling.
    """


class InvalidFormat(ConfigError):
    """Raised when an input artifact cannot be parsed into structured data.

    Why
    ----
    Distinguish between missing files and malformed content.
    """


class ParseError(InvalidFormat):
    """A configuration document failed to parse.

    Attributes
    ----------
    format:
        Name of the textual format (``"yaml"``, ``"toml"``, ``"json"``).
    line:
        1-based line reported by the parser, ``None`` when unknown.
    message:
        Parser message without location decoration.

    Examples
    --------
    >>> str(ParseError("json", 3, "Expecting value"))
    'json parse error at line 3: Expecting value'
    >>> str(ParseError("yaml", None, "bad root"))
    'yaml parse error: bad root'
    """

    def __init__(self, format: str, line: int | None, message: str) -> None:
        self.format = format
        self.line = line
        self.message = message
        location = f" at line {line}" if line is not None else ""
        super().__init__(f"{format} parse error{location}: {message}")


class UnsupportedFormat(ConfigError):
    """The format of a configuration file could not be determined."""


class ValidationError(ConfigError):
    """Signifies that syntactically valid configuration failed semantic checks."""


class MergeConflict(ValidationError):
    """A mapping and a non-mapping collided while the strict policy was active."""

    def __init__(self, key: str, layer: str) -> None:
        self.key = key
        self.layer = layer
        super().__init__(f"Layer {layer} changes the kind of value at {key!r}")


class NotFound(ConfigError):
    """Represents missing-but-optional resources (files, store keys).

    Why
    ----
    Allow adapters to signal absence without aborting the entire configuration
    load. Absence is expected and never logged as an error.
    """


class KeyNotFound(NotFound, KeyError):
    """A dotted configuration path does not exist in the snapshot."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(path)

    def __str__(self) -> str:
        return f"Configuration key not found: {self.path}"


class StoreError(ConfigError):
    """Base type for coordination store failures."""


class StoreUnavailable(StoreError):
    """The coordination store could not be reached or did not answer in time.

    Transient: retried with backoff by the component that owns retry policy.
    """

    def __init__(self, cause: BaseException | str) -> None:
        self.cause = cause
        super().__init__(f"Coordination store unavailable: {cause}")


class PreconditionFailed(StoreError):
    """A conditional write found a different revision than the caller expected."""

    def __init__(self, key: str, expected_revision: int) -> None:
        self.key = key
        self.expected_revision = expected_revision
        super().__init__(f"Precondition failed for {key!r}: expected revision {expected_revision}")


class ClockSkewFatal(ConfigError):
    """The wall clock moved backwards further than the generator tolerates.

    The generator stops issuing identifiers after raising this error; issuing
    more would risk duplicates.
    """

    def __init__(self, amount_ms: int) -> None:
        self.amount_ms = amount_ms
        super().__init__(f"Clock moved backwards by {amount_ms} ms; refusing to generate ids")


class LayerLoadError(ConfigError):
    """A configuration layer could not be loaded; wraps the underlying failure."""

    def __init__(self, layer: str, path: str | None, cause: BaseException) -> None:
        self.layer = layer
        self.path = path
        self.cause = cause
        where = f" ({path})" if path else ""
        super().__init__(f"Failed to load layer {layer!r}{where}: {cause}")
