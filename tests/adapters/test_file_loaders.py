from __future__ import annotations

import json
from pathlib import Path

import pytest

from lib_cluster_config.adapters.file_loaders.structured import (
    Format,
    JSONFileLoader,
    TOMLFileLoader,
    YAMLFileLoader,
    detect_format,
    load,
    load_file,
    load_source,
)
from lib_cluster_config.domain.errors import InvalidFormat, NotFound, ParseError, UnsupportedFormat
from lib_cluster_config.domain.value import Origin

EQUIVALENT_DOCUMENTS = {
    Format.YAML: "db:\n  host: localhost\n  ports: [5432, 5433]\nfeature: true\n",
    Format.TOML: '[db]\nhost = "localhost"\nports = [5432, 5433]\n\nfeature = true\n',
    Format.JSON: '{"db": {"host": "localhost", "ports": [5432, 5433]}, "feature": true}',
}


def test_toml_loader(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("[db]\nport = 5432\n")
    data = TOMLFileLoader().load(str(path))
    assert data["db"]["port"] == 5432


def test_toml_loader_missing_file(tmp_path: Path) -> None:
    with pytest.raises(NotFound):
        TOMLFileLoader().load(str(tmp_path / "missing.toml"))


def test_json_loader_invalid(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid}")
    with pytest.raises(InvalidFormat):
        JSONFileLoader().load(str(path))


def test_json_loader_valid(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"feature": True}), encoding="utf-8")
    assert JSONFileLoader().load(str(path))["feature"] is True


def test_yaml_loader_handles_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("# empty file\n")
    assert YAMLFileLoader().load(str(path)) == {}


def test_equivalent_documents_parse_to_equal_trees() -> None:
    trees = [load(fmt, body) for fmt, body in EQUIVALENT_DOCUMENTS.items()]
    assert trees[0] == trees[1] == trees[2]
    assert trees[0]["db"]["ports"] == (5432, 5433)


@pytest.mark.parametrize(
    ("fmt", "body", "line"),
    [
        (Format.JSON, '{\n  "a": 1,\n  "b": \n}', 4),
        (Format.YAML, "a: 1\nb: c: d\n", 2),
        (Format.TOML, "a = 1\nb = = 2\n", 2),
    ],
)
def test_parse_errors_report_line_numbers(fmt: Format, body: str, line: int) -> None:
    with pytest.raises(ParseError) as excinfo:
        load(fmt, body)
    assert excinfo.value.format == fmt.value
    assert excinfo.value.line == line


def test_yaml_dates_become_iso_strings() -> None:
    assert load("yaml", "released: 2024-05-01\n")["released"] == "2024-05-01"


def test_load_source_requires_mapping_root() -> None:
    with pytest.raises(ParseError):
        load_source("json", "[1, 2]")
    source = load_source("yaml", "", name="empty")
    assert source.tree == {}
    assert source.origin is Origin.FILE


def test_detect_format_prefers_hint() -> None:
    assert detect_format("settings.conf", "YAML") is Format.YAML
    assert detect_format("settings.JSON") is Format.JSON
    with pytest.raises(UnsupportedFormat):
        detect_format("settings")
    with pytest.raises(UnsupportedFormat):
        detect_format("settings.json", "ini")


def test_load_file_builds_file_source(tmp_path: Path) -> None:
    path = tmp_path / "service.yml"
    path.write_text("service:\n  name: billing\n", encoding="utf-8")
    source = load_file(path, name="file:service")
    assert source.origin is Origin.FILE
    assert source.priority == 10
    assert source.path == str(path)
    assert source.tree["service"]["name"] == "billing"
