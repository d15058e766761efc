"""Snowflake identifier layout and textual encoding.

An identifier packs ``(timestamp, node, sequence)`` into one ordered integer:

====================  ======  =============================================
field                 bits    meaning
====================  ======  =============================================
timestamp             41      milliseconds since :data:`EPOCH_MS`
node                  10      :class:`NodeId` value
sequence              12      counter within one millisecond
====================  ======  =============================================

The sign bit stays clear, so identifiers fit signed and unsigned 64-bit
columns alike and sort by creation time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Literal, NamedTuple

TIMESTAMP_BITS: Final[int] = 41
NODE_BITS: Final[int] = 10
SEQUENCE_BITS: Final[int] = 12

MAX_TIMESTAMP: Final[int] = (1 << TIMESTAMP_BITS) - 1
MAX_NODE_ID: Final[int] = (1 << NODE_BITS) - 1
MAX_SEQUENCE: Final[int] = (1 << SEQUENCE_BITS) - 1

NODE_SHIFT: Final[int] = SEQUENCE_BITS
TIMESTAMP_SHIFT: Final[int] = SEQUENCE_BITS + NODE_BITS

#: 2020-01-01T00:00:00Z in Unix milliseconds.
EPOCH_MS: Final[int] = 1_577_836_800_000

_RADIX32_ALPHABET: Final[str] = "0123456789abcdefghijklmnopqrstuv"


@dataclass(frozen=True)
class NodeId:
    """Node identifier plus how it was obtained.

    ``source`` is ``"override"``, ``"hardware"``, or ``"fallback"`` so callers
    never mistake a random fallback for a hardware-derived value.
    """

    value: int
    source: Literal["override", "hardware", "fallback"]
    address: str | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.value <= MAX_NODE_ID:
            raise ValueError(f"node id must be within [0, {MAX_NODE_ID}], got {self.value}")

    def __int__(self) -> int:
        return self.value


class GeneratedId(NamedTuple):
    """Unpacked identifier components.

    Examples
    --------
    >>> gid = GeneratedId(timestamp_ms=EPOCH_MS + 1, node_id=3, sequence=7)
    >>> packed = gid.pack()
    >>> packed
    4206599
    >>> GeneratedId.unpack(packed) == gid
    True
    """

    timestamp_ms: int
    node_id: int
    sequence: int

    def pack(self) -> int:
        """Return the 63-bit integer form."""

        offset = self.timestamp_ms - EPOCH_MS
        if not 0 <= offset <= MAX_TIMESTAMP:
            raise ValueError(f"timestamp {self.timestamp_ms} outside the representable range")
        if not 0 <= self.node_id <= MAX_NODE_ID:
            raise ValueError(f"node id {self.node_id} outside [0, {MAX_NODE_ID}]")
        if not 0 <= self.sequence <= MAX_SEQUENCE:
            raise ValueError(f"sequence {self.sequence} outside [0, {MAX_SEQUENCE}]")
        return (offset << TIMESTAMP_SHIFT) | (self.node_id << NODE_SHIFT) | self.sequence

    @classmethod
    def unpack(cls, value: int) -> GeneratedId:
        """Split a packed identifier into its components."""

        if value < 0 or value >> (TIMESTAMP_SHIFT + TIMESTAMP_BITS):
            raise ValueError(f"{value} is not a valid identifier")
        return cls(
            timestamp_ms=(value >> TIMESTAMP_SHIFT) + EPOCH_MS,
            node_id=(value >> NODE_SHIFT) & MAX_NODE_ID,
            sequence=value & MAX_SEQUENCE,
        )

    def to_radix32(self) -> str:
        """Return the packed identifier in lowercase base 32."""

        return to_radix32(self.pack())


def to_radix32(value: int) -> str:
    """Render a non-negative integer with the digits ``0-9a-v``.

    Examples
    --------
    >>> to_radix32(0), to_radix32(31), to_radix32(32)
    ('0', 'v', '10')
    """

    if value < 0:
        raise ValueError("radix32 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 32)
        digits.append(_RADIX32_ALPHABET[remainder])
    return "".join(reversed(digits))


def from_radix32(text: str) -> int | None:
    """Parse a lowercase base-32 string; ``None`` when it is not one.

    Accepts 1 to 13 characters (enough for 64 bits).

    Examples
    --------
    >>> from_radix32("10"), from_radix32("v"), from_radix32("X"), from_radix32("")
    (32, 31, None, None)
    """

    if not 1 <= len(text) <= 13:
        return None
    value = 0
    for char in text:
        digit = _RADIX32_ALPHABET.find(char)
        if digit < 0:
            return None
        value = (value << 5) | digit
    if value >> 64:
        return None
    return value
