"""
Unit tests for RetryPolicy.
"""

import pytest

from webhook_relay import RelayRuntimeSettings
from webhook_relay.coordinator import RetryPolicy


def test_backoff_curve_monotonic_with_cap():
    """Test exponential backoff with max cap."""
    rp = RetryPolicy(
        initial_backoff_ms=50,
        max_backoff_ms=200,
        backoff_multiplier=2.0,
        jitter=False,
    )
    vals = [rp.next_backoff_ms(i) for i in range(1, 10)]
    # 50, 100, 200, 200, 200...
    assert vals[:3] == [50, 100, 200]
    assert all(v <= 200 for v in vals)


def test_backoff_with_jitter():
    """Test that jitter produces values in expected range."""
    rp = RetryPolicy(initial_backoff_ms=100, max_backoff_ms=1000, jitter=True)
    # With jitter, values should be 50-100% of calculated
    vals = [rp.next_backoff_ms(1) for _ in range(20)]
    assert all(50 <= v <= 100 for v in vals)


def test_exhausted():
    rp = RetryPolicy(max_attempts=3)
    assert not rp.exhausted(2)
    assert rp.exhausted(3)
    assert not RetryPolicy(max_attempts=0).exhausted(10_000)


def test_invalid_values():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=-1)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_multiplier=0.5)


def test_from_settings():
    cfg = RelayRuntimeSettings(
        relay_max_attempts=4,
        relay_initial_backoff_ms=10,
        relay_max_backoff_ms=80,
        relay_backoff_jitter=False,
    )
    rp = RetryPolicy.from_settings(cfg)
    assert rp.max_attempts == 4
    assert [rp.next_backoff_ms(i) for i in (1, 2, 3, 4, 5)] == [10, 20, 40, 80, 80]
