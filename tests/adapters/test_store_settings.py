from __future__ import annotations

import pytest

from lib_cluster_config.adapters.env.store import DEFAULT_PORT, DEFAULT_TIMEOUT, StoreSettings
from lib_cluster_config.domain.errors import ValidationError


def test_endpoint_is_required() -> None:
    with pytest.raises(ValidationError, match="ETCD_ENDPOINT"):
        StoreSettings.from_env({})


def test_auth_disabled_by_default() -> None:
    settings = StoreSettings.from_env({"ETCD_ENDPOINT": "etcd.local", "ETCD_USER": "root"})
    assert settings.enable_auth is False
    assert settings.user is None
    assert settings.timeout == DEFAULT_TIMEOUT
    assert settings.host_port == ("etcd.local", DEFAULT_PORT)


@pytest.mark.parametrize("spelling", ["false", "False", "FALSE", "no", "0"])
def test_false_spellings_disable_auth(spelling: str) -> None:
    settings = StoreSettings.from_env({"ETCD_ENDPOINT": "etcd", "ETCD_ENABLE_AUTH": spelling})
    assert settings.enable_auth is False


def test_auth_requires_credentials() -> None:
    env = {"ETCD_ENDPOINT": "etcd", "ETCD_ENABLE_AUTH": "true", "ETCD_USER": "svc"}
    with pytest.raises(ValidationError, match="ETCD_PASSWORD"):
        StoreSettings.from_env(env)
    settings = StoreSettings.from_env(env | {"ETCD_PASSWORD": "pw"})
    assert (settings.enable_auth, settings.user, settings.password) == (True, "svc", "pw")


def test_endpoint_scheme_and_timeout() -> None:
    settings = StoreSettings.from_env({"ETCD_ENDPOINT": "http://10.0.0.5:23790", "ETCD_TIMEOUT": "1.5"})
    assert settings.host_port == ("10.0.0.5", 23790)
    assert settings.timeout == 1.5
    with pytest.raises(ValidationError):
        StoreSettings.from_env({"ETCD_ENDPOINT": "etcd", "ETCD_TIMEOUT": "soon"})


def test_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ETCD_ENDPOINT", "etcd-from-env:2379")
    monkeypatch.delenv("ETCD_ENABLE_AUTH", raising=False)
    assert StoreSettings.from_env().endpoint == "etcd-from-env:2379"
