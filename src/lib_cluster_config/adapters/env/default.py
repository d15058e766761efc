"""Environment variable adapter.

Purpose
-------
Translate process environment variables into a nested configuration source
that joins the merge above files and below the coordination store.

Key behaviours
--------------
* Only variables carrying the configured prefix (``default_env_prefix``) are
  captured; ``DEMO_SERVICE__TIMEOUT`` becomes ``service.timeout`` for prefix
  ``DEMO``.
* ``__`` separates nesting levels; segments are lower-cased.
* Scalars are coerced (booleans, ``null``/``none``, integers, floats).
"""

from __future__ import annotations

import os
from typing import Mapping

from ...domain.value import ConfigSource, Origin
from ...observability import log_debug


def default_env_prefix(slug: str) -> str:
    """Return the canonical environment prefix for *slug*.

    Examples
    --------
    >>> default_env_prefix('billing-service')
    'BILLING_SERVICE'
    """

    return slug.replace("-", "_").upper()


class DefaultEnvLoader:
    """Load environment variables that belong to the configuration namespace."""

    def __init__(self, *, environ: Mapping[str, str] | None = None) -> None:
        """Use *environ* instead of :data:`os.environ` (tests pass a dict)."""

        self._environ = os.environ if environ is None else environ

    def load(self, prefix: str) -> dict[str, object]:
        """Return a nested mapping built from variables with the supplied *prefix*.

        Variables whose key collides with a scalar already assigned (``A=1`` and
        ``A__B=2``) are skipped and logged; the first one in sorted order wins.

        Examples
        --------
        >>> env = {
        ...     'DEMO_SERVICE__ENABLED': 'true',
        ...     'DEMO_SERVICE__RETRIES': '3',
        ... }
        >>> payload = DefaultEnvLoader(environ=env).load('DEMO')
        >>> payload['service']['retries'], payload['service']['enabled']
        (3, True)
        """

        prefix = f"{prefix}_" if prefix and not prefix.endswith("_") else prefix
        collected: dict[str, object] = {}
        for key in sorted(self._environ):
            if prefix and not key.startswith(prefix):
                continue
            stripped = key[len(prefix) :] if prefix else key
            if not stripped:
                continue
            try:
                assign_nested(collected, stripped, _coerce(self._environ[key]))
            except ValueError as exc:
                log_debug("env_variable_skipped", layer="env", path=None, key=key, error=str(exc))
        log_debug("env_variables_loaded", layer="env", path=None, keys=sorted(collected.keys()))
        return collected

    def load_source(self, prefix: str, *, priority: int | None = None) -> ConfigSource:
        """Return the environment layer as a :class:`ConfigSource`."""

        return ConfigSource.of(Origin.ENVIRONMENT, self.load(prefix), priority=priority)


def assign_nested(target: dict[str, object], key: str, value: object) -> None:
    """Assign ``value`` inside ``target`` using ``__`` as a nesting delimiter.

    Examples
    --------
    >>> data: dict[str, object] = {}
    >>> assign_nested(data, 'SERVICE__TIMEOUT', 5)
    >>> data
    {'service': {'timeout': 5}}
    """

    parts = key.split("__")
    cursor = target
    for part in parts[:-1]:
        cursor = _ensure_child_mapping(cursor, part)
    final_key = parts[-1].lower()
    if isinstance(cursor.get(final_key), dict):
        raise ValueError(f"Cannot override mapping with scalar for key {key}")
    cursor[final_key] = value


def _ensure_child_mapping(mapping: dict[str, object], key: str) -> dict[str, object]:
    """Ensure ``mapping[key]`` is a ``dict``, creating it when absent."""

    resolved = key.lower()
    child = mapping.setdefault(resolved, {})
    if not isinstance(child, dict):
        raise ValueError(f"Cannot override scalar with mapping for key {key}")
    return child


def _coerce(value: str) -> object:
    """Coerce textual environment values to Python primitives where possible.

    Examples
    --------
    >>> _coerce('true'), _coerce('10'), _coerce('3.5'), _coerce('hello'), _coerce('none')
    (True, 10, 3.5, 'hello', None)
    """

    lowered = value.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return None
    if value.isdigit() or (value.startswith("-") and value[1:].isdigit()):
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value
