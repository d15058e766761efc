"""Backoff schedule used by store retries and watch reconnects."""

from __future__ import annotations

import pytest

from lib_cluster_config.application.retry import Backoff


def test_delay_grows_exponentially_until_the_cap() -> None:
    policy = Backoff(base=0.1, multiplier=3.0, max_sleep=1.0, jitter=0.0)
    assert [policy.delay(attempt) for attempt in range(4)] == pytest.approx([0.1, 0.3, 0.9, 1.0])


def test_jitter_stays_within_bounds() -> None:
    policy = Backoff(base=0.5, multiplier=1.0, max_sleep=0.5, jitter=0.2)
    for _ in range(100):
        assert 0.5 <= policy.delay(3) <= 0.7
