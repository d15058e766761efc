"""Static layering end to end: defaults, files, and environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from lib_cluster_config import LayerLoadError, read_config


def test_read_config_precedence(write_file: Callable[[str, str], Path]) -> None:
    base = write_file("base.toml", "[service]\ntimeout = 5\nretries = 1\n")
    override = write_file("override.yaml", "service:\n  timeout: 10\n  endpoint: https://api\n")

    config = read_config(
        files=[base, override],
        defaults={"service": {"timeout": 1, "mode": "safe"}},
        env_prefix="CONFIG_KIT",
        environ={"CONFIG_KIT_SERVICE__TIMEOUT": "20", "OTHER_SERVICE__TIMEOUT": "99"},
    )

    assert config.get("service.timeout") == 20
    assert config.get("service.retries") == 1
    assert config.get("service.endpoint") == "https://api"
    assert config.get("service.mode") == "safe"
    assert config.origin("service.timeout")["layer"] == "env"
    assert config.origin("service.retries")["layer"] == f"file:{base}"
    assert config.origin("service.endpoint")["path"] == str(override)
    assert config.origin("service.mode")["layer"] == "defaults"


def test_missing_files_are_skipped(tmp_path: Path, write_file: Callable[[str, str], Path]) -> None:
    present = write_file("present.json", '{"a": {"b": 1}}')
    config = read_config(files=[tmp_path / "absent.toml", present])
    assert config.as_dict() == {"a": {"b": 1}}


def test_malformed_file_names_the_layer(write_file: Callable[[str, str], Path]) -> None:
    broken = write_file("broken.json", '{"a": ')
    with pytest.raises(LayerLoadError) as excinfo:
        read_config(files=[broken])
    assert excinfo.value.layer == "file"
    assert excinfo.value.path == str(broken)


def test_empty_configuration_is_an_empty_snapshot() -> None:
    config = read_config()
    assert config.as_dict() == {}
    assert config.version == 1


def test_snapshot_is_immutable(write_file: Callable[[str, str], Path]) -> None:
    config = read_config(files=[write_file("app.yaml", "items:\n  - 1\n  - 2\n")])
    assert config.get("items") == (1, 2)
    with pytest.raises(TypeError):
        config.data["items"] = ()  # type: ignore[index]
