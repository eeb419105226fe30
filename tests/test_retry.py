from datetime import timedelta

import pytest

from issuer_core.retry import ItemExponentialFailureRateLimiter, RetryTracker, should_escalate


def test_tracker_records_first_failure():
    t = RetryTracker()
    assert t.observe("k", True, 100.0) == timedelta(0)
    assert t.observe("k", True, 130.0) == timedelta(seconds=30)
    assert t.elapsed("k", 160.0) == timedelta(seconds=60)
    assert len(t) == 1


def test_tracker_success_resets_incident():
    t = RetryTracker()
    t.observe("k", True, 100.0)
    assert t.observe("k", False, 200.0) is None
    assert t.observe("k", True, 300.0) == timedelta(0)


def test_tracker_clear():
    t = RetryTracker()
    t.observe("k", True, 1.0)
    t.clear("k")
    assert t.elapsed("k", 5.0) is None
    assert len(t) == 0


def test_should_escalate_is_strict():
    limit = timedelta(seconds=10)
    assert not should_escalate(None, limit)
    assert not should_escalate(timedelta(seconds=10), limit)
    assert should_escalate(timedelta(seconds=10, microseconds=1), limit)


def test_exponential_delays_capped():
    rl = ItemExponentialFailureRateLimiter(0.2, 1.0)
    delays = [rl.when("k") for _ in range(5)]
    assert delays == pytest.approx([0.2, 0.4, 0.8, 1.0, 1.0])
    assert rl.num_requeues("k") == 5


def test_forget_resets():
    rl = ItemExponentialFailureRateLimiter(0.2, 5.0)
    rl.when("k")
    rl.when("k")
    rl.forget("k")
    assert rl.num_requeues("k") == 0
    assert rl.when("k") == pytest.approx(0.2)


def test_different_error_resets_count():
    rl = ItemExponentialFailureRateLimiter(0.2, 5.0)
    assert rl.when("k", ValueError("a")) == pytest.approx(0.2)
    assert rl.when("k", ValueError("a")) == pytest.approx(0.4)
    assert rl.when("k", ValueError("b")) == pytest.approx(0.2)


def test_keys_are_independent():
    rl = ItemExponentialFailureRateLimiter(0.1, 5.0)
    rl.when("a")
    rl.when("a")
    assert rl.when("b") == pytest.approx(0.1)


def test_long_failure_does_not_overflow():
    rl = ItemExponentialFailureRateLimiter(0.2, 5.0)
    for _ in range(200):
        delay = rl.when("k")
    assert delay == 5.0


def test_invalid_bounds():
    with pytest.raises(ValueError):
        ItemExponentialFailureRateLimiter(0, 1)
    with pytest.raises(ValueError):
        ItemExponentialFailureRateLimiter(2, 1)
