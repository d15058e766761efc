"""Time-ordered 63-bit identifier generation.

Purpose
-------
Issue identifiers that are unique across the cluster without coordination:
each node owns a distinct :class:`NodeId`, and within one node a
``(millisecond, sequence)`` pair is never issued twice. See
:mod:`lib_cluster_config.domain.ids` for the bit layout.

Clock handling
--------------
* Same millisecond: the sequence increments; at 4096 the generator waits for
  the next millisecond.
* Clock moved backwards by at most ``max_skew_ms``: the last timestamp is
  reused and the sequence keeps counting, so identifiers stay monotonic.
* Clock moved backwards further: :class:`ClockSkewFatal` is raised and the
  generator refuses every later request.
* A new generator never issues identifiers in the millisecond it was created
  in, so a restarted process cannot repeat its predecessor's last millisecond.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from ..domain.errors import ClockSkewFatal
from ..domain.ids import MAX_SEQUENCE, GeneratedId, NodeId
from ..observability import log_error, log_warning

Clock = Callable[[], int]
Sleep = Callable[[float], None]


def wall_clock_ms() -> int:
    """Return the current Unix time in whole milliseconds."""

    return time.time_ns() // 1_000_000


class SnowflakeGenerator:
    """Thread-safe snowflake identifier generator for one node.

    Parameters
    ----------
    node_id:
        This node's identifier (``NodeId`` or a plain ``int`` in ``[0, 1023]``).
    clock:
        Millisecond clock; defaults to :func:`wall_clock_ms`.
    sleep:
        Sleep function in seconds used while waiting for the clock.
    max_skew_ms:
        Largest backward clock jump absorbed by reusing the last timestamp.

    Examples
    --------
    >>> ticks = iter(range(1_600_000_000_000, 1_600_000_001_000))
    >>> generator = SnowflakeGenerator(5, clock=lambda: next(ticks), sleep=lambda _: None)
    >>> first, second = generator.next(), generator.next()
    >>> first.node_id, first < second
    (5, True)
    """

    def __init__(
        self,
        node_id: NodeId | int,
        *,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
        max_skew_ms: int = 1000,
    ) -> None:
        if not isinstance(node_id, NodeId):
            node_id = NodeId(int(node_id), "override")
        if max_skew_ms < 0:
            raise ValueError("max_skew_ms must not be negative")
        self._identity = node_id
        self._node = node_id.value
        self._clock = clock or wall_clock_ms
        self._sleep = sleep or time.sleep
        self._max_skew_ms = max_skew_ms
        self._lock = threading.Lock()
        # An exhausted sequence in the creation millisecond forces the first
        # identifier into a later millisecond.
        self._last_timestamp = self._clock()
        self._sequence = MAX_SEQUENCE
        self._failure: ClockSkewFatal | None = None
        self._behind = False

    @property
    def node_id(self) -> int:
        return self._node

    @property
    def node(self) -> NodeId:
        """The node identity, including how it was obtained."""

        return self._identity

    @property
    def last_timestamp(self) -> int:
        return self._last_timestamp

    def next(self) -> GeneratedId:
        """Return the next identifier in unpacked form.

        Raises
        ------
        ClockSkewFatal
            When the clock moved back more than ``max_skew_ms``; every later
            call raises as well.
        """

        failure: ClockSkewFatal | None = None
        behind_ms = 0
        with self._lock:
            if self._failure is not None:
                raise ClockSkewFatal(self._failure.amount_ms)
            try:
                generated, behind_ms = self._advance()
            except ClockSkewFatal as exc:
                failure = exc
        if failure is not None:
            log_error("clock_skew_fatal", layer="idgen", path=None, amount_ms=failure.amount_ms, limit_ms=self._max_skew_ms)
            raise failure
        if behind_ms:
            log_warning("clock_moved_backwards", layer="idgen", path=None, amount_ms=behind_ms)
        return generated

    def next_id(self) -> int:
        """Return the next identifier as a packed integer."""

        return self.next().pack()

    def _advance(self) -> tuple[GeneratedId, int]:
        """Step the state; caller holds the lock.

        Returns the identifier and, for the first call of a backward clock
        episode, how far the clock is behind (``0`` otherwise).
        """

        behind_ms = 0
        now = self._read_clock()
        if now > self._last_timestamp:
            self._last_timestamp = now
            self._sequence = 0
            self._behind = False
        elif self._sequence < MAX_SEQUENCE:
            if now < self._last_timestamp and not self._behind:
                self._behind = True
                behind_ms = self._last_timestamp - now
            self._sequence += 1
        else:
            self._last_timestamp = self._wait_past(self._last_timestamp)
            self._sequence = 0
            self._behind = False
        return GeneratedId(self._last_timestamp, self._node, self._sequence), behind_ms

    def _read_clock(self) -> int:
        now = self._clock()
        skew = self._last_timestamp - now
        if skew > self._max_skew_ms:
            self._failure = ClockSkewFatal(skew)
            raise self._failure
        return now

    def _wait_past(self, timestamp: int) -> int:
        now = self._read_clock()
        while now <= timestamp:
            self._sleep((timestamp - now + 1) / 1000)
            now = self._read_clock()
        return now
