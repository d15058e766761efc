"""Node identity for identifier generation.

Resolution order
----------------
1. An explicit override (validated to ``[0, 1023]``).
2. Hardware: the lexicographically first usable link-layer address reported
   by :func:`psutil.net_if_addrs`, hashed into the node id range.
3. Fallback: a random value chosen once per process and logged as a warning.

Resolution never fails because of interface enumeration; it degrades to the
fallback. Two hosts whose addresses hash to the same value collide, so
deployments that need guaranteed uniqueness set the override.
"""

from __future__ import annotations

import functools
import hashlib
import re
import secrets
from collections.abc import Iterable, Mapping

import psutil

from ...domain.ids import MAX_NODE_ID, NodeId
from ...observability import log_debug, log_warning

_MAC_PATTERN = re.compile(r"^[0-9a-f]{2}(:[0-9a-f]{2}){5}$")
_UNUSABLE = frozenset({"00:00:00:00:00:00", "ff:ff:ff:ff:ff:ff"})


def normalize_mac(address: str) -> str | None:
    """Return *address* as ``aa:bb:cc:dd:ee:ff`` or ``None`` when unusable.

    Examples
    --------
    >>> normalize_mac("AA-BB-CC-00-11-22")
    'aa:bb:cc:00:11:22'
    >>> normalize_mac("00:00:00:00:00:00") is None
    True
    """

    candidate = address.strip().lower().replace("-", ":")
    if not _MAC_PATTERN.match(candidate) or candidate in _UNUSABLE:
        return None
    return candidate


def node_value_for(address: str) -> int:
    """Hash a normalised link-layer address into ``[0, 1023]``."""

    digest = hashlib.sha256(address.encode("ascii")).digest()
    return int.from_bytes(digest[:8], "big") % (MAX_NODE_ID + 1)


@functools.lru_cache(maxsize=1)
def process_fallback_value() -> int:
    """Random node value, fixed for the lifetime of this process."""

    return secrets.randbelow(MAX_NODE_ID + 1)


def system_link_addresses() -> dict[str, list[str]]:
    """Link-layer addresses per interface as reported by ``psutil``."""

    return {
        name: [entry.address for entry in entries if entry.family == psutil.AF_LINK]
        for name, entries in psutil.net_if_addrs().items()
    }


class NodeIdentityResolver:
    """Determine this process's :class:`NodeId`.

    Parameters
    ----------
    override:
        Explicit node value; wins over everything else.
    interfaces:
        Interface name to link-layer addresses; ``None`` asks the operating
        system through ``psutil``.
    """

    def __init__(
        self,
        override: int | None = None,
        interfaces: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        if override is not None and not 0 <= override <= MAX_NODE_ID:
            raise ValueError(f"node id override must be within [0, {MAX_NODE_ID}], got {override}")
        self._override = override
        self._interfaces = interfaces

    def resolve(self) -> NodeId:
        if self._override is not None:
            log_debug("node_id_resolved", layer="node", path=None, source="override", value=self._override)
            return NodeId(self._override, "override")
        address = self._hardware_address()
        if address is not None:
            node = NodeId(node_value_for(address), "hardware", address)
            log_debug("node_id_resolved", layer="node", path=None, source="hardware", value=node.value, address=address)
            return node
        node = NodeId(process_fallback_value(), "fallback")
        log_warning("node_id_fallback", layer="node", path=None, source="fallback", value=node.value)
        return node

    def _hardware_address(self) -> str | None:
        try:
            interfaces = self._interfaces if self._interfaces is not None else system_link_addresses()
        except (OSError, psutil.Error) as exc:
            log_warning("node_interfaces_unavailable", layer="node", path=None, error=str(exc))
            return None
        candidates = {
            normalized
            for addresses in interfaces.values()
            for normalized in (normalize_mac(address) for address in addresses)
            if normalized is not None
        }
        return min(candidates) if candidates else None
