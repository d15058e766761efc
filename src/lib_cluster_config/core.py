"""Composition root for ``lib_cluster_config``.

Purpose
-------
Wire the adapters (structured files, environment, coordination store, node
identity) to the application services (merge, snapshot publisher, watch
dispatchers, identifier generator) and expose the consumer-facing API.

Contents
--------
* :func:`read_config` – one-shot merge of defaults, files, and environment.
* :func:`static_sources` – the static layers as :class:`ConfigSource` values.
* :class:`ClusterConfig` – live configuration plus identifiers for a service.
* :func:`open_cluster_config` – build a :class:`ClusterConfig` including remote
  prefixes followed through the coordination store.

System Role
-----------
This is the only module that knows every adapter. Precedence is expressed as
source priorities: defaults ``0`` < files ``10`` < environment ``15`` <
remote ``20``; files listed later override earlier ones.
"""

from __future__ import annotations

import functools
import os
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from .adapters.env.default import DefaultEnvLoader
from .adapters.env.store import StoreSettings
from .adapters.file_loaders.structured import Format, load, load_file
from .adapters.node.hardware import NodeIdentityResolver
from .adapters.store.bridge import CoordinationClient
from .application.idgen import SnowflakeGenerator
from .application.merge import ConflictPolicy
from .application.ports import CoordinationPort
from .application.snapshots import ChangeCallback, SnapshotPublisher
from .application.watch import WatchDispatcher
from .domain.config import ConfigSnapshot
from .domain.errors import InvalidFormat, LayerLoadError, NotFound, UnsupportedFormat, ValidationError
from .domain.ids import NodeId
from .domain.value import ConfigSource, Origin
from .observability import bind_trace_id, log_debug, log_info, make_event

_MISSING = object()


def static_sources(
    *,
    files: Iterable[str | Path] = (),
    defaults: Mapping[str, Any] | None = None,
    env_prefix: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[ConfigSource]:
    """Load the static layers in precedence order.

    Missing files are skipped; malformed ones raise :class:`LayerLoadError`.
    The environment layer is read only when *env_prefix* is given.
    """

    sources: list[ConfigSource] = []
    if defaults:
        sources.append(ConfigSource.of(Origin.DEFAULT, defaults, name="defaults"))
        log_debug("layer_loaded", **make_event("defaults", None, {"keys": len(defaults)}))
    for path in files:
        source = _load_file_layer(str(path))
        if source is not None:
            sources.append(source)
    if env_prefix:
        env_source = DefaultEnvLoader(environ=environ).load_source(env_prefix)
        if env_source.tree:
            sources.append(env_source)
            log_debug("layer_loaded", **make_event("env", None, {"keys": len(env_source.tree)}))
    return sources


def read_config(
    *,
    files: Iterable[str | Path] = (),
    defaults: Mapping[str, Any] | None = None,
    env_prefix: str | None = None,
    environ: Mapping[str, str] | None = None,
    conflict: ConflictPolicy = "replace",
) -> ConfigSnapshot:
    """Return the merged static configuration as an immutable snapshot.

    Examples
    --------
    >>> from pathlib import Path
    >>> from tempfile import TemporaryDirectory
    >>> tmp = TemporaryDirectory()
    >>> target = Path(tmp.name) / "service.toml"
    >>> _ = target.write_text("[service]\\nname = 'demo'\\nport = 80\\n", encoding="utf-8")
    >>> snapshot = read_config(
    ...     files=[target],
    ...     defaults={"service": {"port": 8080, "debug": False}},
    ...     env_prefix="DEMO",
    ...     environ={"DEMO_SERVICE__DEBUG": "true"},
    ... )
    >>> snapshot.get("service.name"), snapshot.get("service.port"), snapshot.get("service.debug")
    ('demo', 80, True)
    >>> tmp.cleanup()
    """

    bind_trace_id(None)
    sources = static_sources(files=files, defaults=defaults, env_prefix=env_prefix, environ=environ)
    if not sources:
        log_info("configuration_empty", layer="none", path=None)
    return SnapshotPublisher(sources, conflict=conflict).current


class ClusterConfig:
    """Live configuration, change notification, and identifiers for one service.

    Reads never block: :meth:`get_config` and :meth:`snapshot` load the
    current immutable snapshot. Remote prefixes are followed by
    :class:`WatchDispatcher` workers between :meth:`start` and :meth:`close`.
    """

    def __init__(
        self,
        publisher: SnapshotPublisher,
        *,
        dispatchers: Sequence[WatchDispatcher] = (),
        client: CoordinationClient | None = None,
        generator: SnowflakeGenerator | None = None,
        node: NodeId | None = None,
        node_resolver: NodeIdentityResolver | None = None,
    ) -> None:
        self._publisher = publisher
        self._dispatchers = list(dispatchers)
        self._client = client
        self._generator = generator
        self._node = node
        self._node_resolver = node_resolver or NodeIdentityResolver()
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    @property
    def version(self) -> int:
        return self._publisher.current.version

    @property
    def dispatchers(self) -> list[WatchDispatcher]:
        return list(self._dispatchers)

    def snapshot(self) -> ConfigSnapshot:
        """Return the current snapshot; later publications do not affect it."""

        return self._publisher.current

    def get_config(self, path: str, default: Any = _MISSING) -> Any:
        """Return the value at dotted *path* in the current snapshot.

        Raises
        ------
        KeyNotFound
            When *path* is missing and no *default* is supplied.
        """

        snapshot = self._publisher.current
        if default is _MISSING:
            return snapshot.get(path)
        return snapshot.get(path, default)

    def on_config_change(self, prefix: str, callback: ChangeCallback) -> Callable[[], None]:
        """Register *callback* for changes below dotted *prefix*; returns an unregister function."""

        return self._publisher.on_config_change(prefix, callback)

    def wait_for_version(self, version: int, timeout: float | None = None) -> ConfigSnapshot | None:
        """Block until *version* is published; ``None`` when *timeout* expires first."""

        return self._publisher.handle.wait_for_version(version, timeout)

    @property
    def node_id(self) -> NodeId:
        with self._lock:
            if self._node is None and self._generator is not None:
                self._node = self._generator.node
            elif self._node is None:
                self._node = self._node_resolver.resolve()
            return self._node

    def next_id(self) -> int:
        """Return a new cluster-unique identifier."""

        return self._ensure_generator().next_id()

    def start(self) -> ClusterConfig:
        """Seed and follow every remote prefix; idempotent."""

        with self._lock:
            if self._closed:
                raise RuntimeError("cluster configuration is closed")
            if self._started:
                return self
            self._started = True
        started: list[WatchDispatcher] = []
        try:
            for dispatcher in self._dispatchers:
                dispatcher.start()
                started.append(dispatcher)
        except BaseException:
            for dispatcher in started:
                dispatcher.stop()
            raise
        log_info("cluster_config_started", layer="final", path=None, remote_prefixes=len(self._dispatchers))
        return self

    def close(self) -> None:
        """Stop the dispatchers, then close the owned store client; idempotent."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
        for dispatcher in self._dispatchers:
            dispatcher.stop()
        if self._client is not None:
            self._client.close()
        log_info("cluster_config_closed", layer="final", path=None)

    def __enter__(self) -> ClusterConfig:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_generator(self) -> SnowflakeGenerator:
        with self._lock:
            if self._generator is None:
                if self._node is None:
                    self._node = self._node_resolver.resolve()
                self._generator = SnowflakeGenerator(self._node)
            return self._generator


def open_cluster_config(
    *,
    files: Iterable[str | Path] = (),
    defaults: Mapping[str, Any] | None = None,
    env_prefix: str | None = None,
    environ: Mapping[str, str] | None = None,
    remote_prefixes: Sequence[str] = (),
    remote_format: Format | str | None = None,
    client: CoordinationPort | None = None,
    store_settings: StoreSettings | None = None,
    node_id: int | None = None,
    conflict: ConflictPolicy = "replace",
    max_skew_ms: int = 1000,
    max_reconnect_attempts: int | None = None,
    start: bool = True,
) -> ClusterConfig:
    """Build a :class:`ClusterConfig` over static layers and remote prefixes.

    Parameters
    ----------
    remote_prefixes:
        Store prefixes merged as remote sources; later prefixes win over
        earlier ones.
    remote_format:
        Decode each remote value as a whole ``yaml``/``toml``/``json``
        document instead of the default JSON-or-text scalar rule.
    client:
        Store client to use; when omitted and prefixes are given, a
        :class:`CoordinationClient` is connected from *store_settings* or the
        ``ETCD_*`` environment and closed together with the result.
    node_id:
        Explicit node value; otherwise ``<env_prefix>_NODE_ID``, then the
        hardware or fallback identity.
    """

    environment = os.environ if environ is None else environ
    bind_trace_id(None)
    publisher = SnapshotPublisher(
        static_sources(files=files, defaults=defaults, env_prefix=env_prefix, environ=environment),
        conflict=conflict,
    )

    owned_client: CoordinationClient | None = None
    if remote_prefixes and client is None:
        settings = store_settings or StoreSettings.from_env(environment)
        owned_client = CoordinationClient.connect(settings)
        client = owned_client

    decoder = functools.partial(load, Format(remote_format)) if remote_format else None
    dispatchers = [
        WatchDispatcher(
            client,
            publisher,
            prefix,
            decoder=decoder,
            max_reconnect_attempts=max_reconnect_attempts,
        )
        for prefix in remote_prefixes
        if client is not None
    ]

    override = node_id if node_id is not None else _node_override(env_prefix, environment)
    resolver = NodeIdentityResolver(override=override)
    node = resolver.resolve()
    config = ClusterConfig(
        publisher,
        dispatchers=dispatchers,
        client=owned_client,
        generator=SnowflakeGenerator(node, max_skew_ms=max_skew_ms),
        node=node,
        node_resolver=resolver,
    )
    if start:
        try:
            config.start()
        except BaseException:
            config.close()
            raise
    return config


def _load_file_layer(path: str) -> ConfigSource | None:
    try:
        source = load_file(path, name=f"file:{path}")
    except NotFound:
        log_debug("layer_skipped", layer="file", path=path, reason="missing")
        return None
    except (InvalidFormat, UnsupportedFormat) as exc:
        log_debug("layer_error", layer="file", path=path, error=str(exc))
        raise LayerLoadError("file", path, exc) from exc
    log_debug("layer_loaded", **make_event("file", path, {"keys": len(source.tree)}))
    return source


def _node_override(env_prefix: str | None, environ: Mapping[str, str]) -> int | None:
    if not env_prefix:
        return None
    variable = f"{env_prefix.rstrip('_')}_NODE_ID"
    raw = environ.get(variable)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValidationError(f"{variable} must be an integer, got {raw!r}") from exc


__all__ = [
    "ClusterConfig",
    "open_cluster_config",
    "read_config",
    "static_sources",
]
