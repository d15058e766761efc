from __future__ import annotations

import json
from types import MappingProxyType

import pytest

from lib_cluster_config.domain.config import EMPTY_SNAPSHOT, ConfigSnapshot, SourceInfo
from lib_cluster_config.domain.errors import KeyNotFound


def make_snapshot() -> ConfigSnapshot:
    data = {"db": {"host": "localhost", "port": 5432, "replicas": ["a", "b"]}, "feature": True}
    meta = {
        "db.host": SourceInfo(layer="file:app.toml", path="app.toml", key="db.host"),
        "db.port": SourceInfo(layer="remote:/cfg/", path="/cfg/", key="db.port"),
        "feature": SourceInfo(layer="env", path=None, key="feature"),
    }
    return ConfigSnapshot(data, meta, 4)


def test_mapping_interface() -> None:
    snapshot = make_snapshot()
    assert snapshot["feature"] is True
    assert "db" in snapshot
    assert len(snapshot) == 2
    assert snapshot.version == 4


def test_get_dot_path() -> None:
    snapshot = make_snapshot()
    assert snapshot.get("db.host") == "localhost"
    assert snapshot.get("db.password", "secret") == "secret"
    assert snapshot.get("db.password", None) is None


def test_missing_path_raises_key_not_found() -> None:
    snapshot = make_snapshot()
    with pytest.raises(KeyNotFound) as excinfo:
        snapshot.get("db.password")
    assert excinfo.value.path == "db.password"
    with pytest.raises(KeyNotFound):
        snapshot.get("feature.enabled")


def test_snapshot_is_deeply_immutable() -> None:
    snapshot = make_snapshot()
    assert isinstance(snapshot["db"], MappingProxyType)
    assert snapshot.get("db.replicas") == ("a", "b")
    with pytest.raises(TypeError):
        snapshot["db"]["host"] = "remote"  # type: ignore[index]


def test_source_mutation_does_not_leak_into_snapshot() -> None:
    data = {"db": {"host": "localhost"}}
    snapshot = ConfigSnapshot(data, {}, 1)
    data["db"]["host"] = "elsewhere"
    assert snapshot.get("db.host") == "localhost"


def test_as_dict_returns_deep_copy() -> None:
    snapshot = make_snapshot()
    dictionary = snapshot.as_dict()
    dictionary["db"]["host"] = "remote"
    dictionary["db"]["replicas"].append("c")
    assert snapshot.get("db.host") == "localhost"
    assert snapshot.get("db.replicas") == ("a", "b")


def test_to_json() -> None:
    payload = json.loads(make_snapshot().to_json(indent=2))
    assert payload["db"]["port"] == 5432
    assert payload["db"]["replicas"] == ["a", "b"]


def test_origin_metadata() -> None:
    snapshot = make_snapshot()
    origin = snapshot.origin("db.port")
    assert origin is not None and origin["layer"] == "remote:/cfg/"
    assert snapshot.origin("missing") is None


def test_subtree_and_contains_path() -> None:
    snapshot = make_snapshot()
    assert snapshot.subtree("") is snapshot.data
    assert snapshot.subtree("db")["port"] == 5432
    assert snapshot.subtree("nope") is None
    assert snapshot.contains_path("db.port")
    assert not snapshot.contains_path("db.port.value")


def test_with_version_shares_data() -> None:
    snapshot = make_snapshot()
    bumped = snapshot.with_version(5)
    assert bumped.version == 5
    assert bumped.data == snapshot.data
    assert snapshot.version == 4


def test_empty_snapshot() -> None:
    assert EMPTY_SNAPSHOT.version == 0
    assert len(EMPTY_SNAPSHOT) == 0
    assert EMPTY_SNAPSHOT.to_json() == "{}"
