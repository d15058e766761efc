"""Coordination store connection settings read from the environment.

Variables
---------
``ETCD_ENDPOINT``
    Required. ``host:port`` (a bare host defaults to port 2379).
``ETCD_ENABLE_AUTH``
    Optional. Any value other than ``false``/``no``/``0`` (in the usual
    spellings) enables authentication.
``ETCD_USER`` / ``ETCD_PASSWORD``
    Required when authentication is enabled.
``ETCD_TIMEOUT``
    Optional per-request timeout in seconds (default ``5``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from ...domain.errors import ValidationError

DEFAULT_PORT = 2379
DEFAULT_TIMEOUT = 5.0

_FALSE_SPELLINGS = frozenset({"false", "FALSE", "False", "no", "No", "NO", "0"})


@dataclass(frozen=True)
class StoreSettings:
    """Connection parameters for the etcd store."""

    endpoint: str
    enable_auth: bool = False
    user: str | None = None
    password: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StoreSettings:
        """Build settings from ``ETCD_*`` variables.

        Examples
        --------
        >>> StoreSettings.from_env({"ETCD_ENDPOINT": "etcd:2379"}).host_port
        ('etcd', 2379)
        >>> StoreSettings.from_env({"ETCD_ENDPOINT": "etcd", "ETCD_ENABLE_AUTH": "yes"})
        Traceback (most recent call last):
        ...
        lib_cluster_config.domain.errors.ValidationError: ETCD_USER is required when ETCD_ENABLE_AUTH is set
        """

        env = os.environ if environ is None else environ
        endpoint = env.get("ETCD_ENDPOINT")
        if not endpoint:
            raise ValidationError("ETCD_ENDPOINT is required")
        raw_auth = env.get("ETCD_ENABLE_AUTH")
        enable_auth = raw_auth is not None and raw_auth not in _FALSE_SPELLINGS
        user = env.get("ETCD_USER")
        password = env.get("ETCD_PASSWORD")
        if enable_auth:
            if user is None:
                raise ValidationError("ETCD_USER is required when ETCD_ENABLE_AUTH is set")
            if password is None:
                raise ValidationError("ETCD_PASSWORD is required when ETCD_ENABLE_AUTH is set")
        raw_timeout = env.get("ETCD_TIMEOUT")
        try:
            timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
        except ValueError as exc:
            raise ValidationError(f"ETCD_TIMEOUT must be a number, got {raw_timeout!r}") from exc
        return cls(
            endpoint=endpoint,
            enable_auth=enable_auth,
            user=user if enable_auth else None,
            password=password if enable_auth else None,
            timeout=timeout,
        )

    @property
    def host_port(self) -> tuple[str, int]:
        """Split :attr:`endpoint` into host and port."""

        endpoint = self.endpoint
        for scheme in ("http://", "https://"):
            if endpoint.startswith(scheme):
                endpoint = endpoint[len(scheme) :]
        host, sep, port = endpoint.rpartition(":")
        if not sep or not port.isdigit():
            return endpoint, DEFAULT_PORT
        return host, int(port)
