"""Layered cluster configuration with live etcd updates and snowflake identifiers.

``read_config`` merges defaults, files, and environment once;
``open_cluster_config`` adds remote prefixes followed through the coordination
store, change callbacks, and cluster-unique identifiers.
"""

from __future__ import annotations

from .adapters.env.default import default_env_prefix
from .adapters.env.store import StoreSettings
from .adapters.store.bridge import BlockingWatch, CoordinationClient
from .application.idgen import SnowflakeGenerator
from .core import ClusterConfig, open_cluster_config, read_config
from .domain.config import ConfigSnapshot
from .domain.errors import (
    ClockSkewFatal,
    ConfigError,
    InvalidFormat,
    KeyNotFound,
    LayerLoadError,
    MergeConflict,
    NotFound,
    ParseError,
    PreconditionFailed,
    StoreError,
    StoreUnavailable,
    UnsupportedFormat,
    ValidationError,
)
from .domain.ids import GeneratedId, NodeId, from_radix32, to_radix32
from .domain.value import ConfigSource, Origin
from .observability import bind_trace_id, get_logger

__all__ = [
    "BlockingWatch",
    "ClockSkewFatal",
    "ClusterConfig",
    "ConfigError",
    "ConfigSnapshot",
    "ConfigSource",
    "CoordinationClient",
    "GeneratedId",
    "InvalidFormat",
    "KeyNotFound",
    "LayerLoadError",
    "MergeConflict",
    "NodeId",
    "NotFound",
    "Origin",
    "ParseError",
    "PreconditionFailed",
    "SnowflakeGenerator",
    "StoreError",
    "StoreSettings",
    "StoreUnavailable",
    "UnsupportedFormat",
    "ValidationError",
    "bind_trace_id",
    "default_env_prefix",
    "from_radix32",
    "get_logger",
    "open_cluster_config",
    "read_config",
    "to_radix32",
]
