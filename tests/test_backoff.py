"""Backoff policy tests."""

import pytest

from contentlab_realtime.realtime.backoff import BackoffPolicy


def test_default_schedule_doubles_from_one_second():
    policy = BackoffPolicy()
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]


def test_delay_is_capped():
    policy = BackoffPolicy()
    assert policy.delay_for(6) == 30.0
    assert policy.delay_for(10_000) == 30.0


def test_custom_multiplier():
    policy = BackoffPolicy(base_delay=0.5, multiplier=3.0, max_delay=10.0)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.5, 4.5, 10.0]


def test_attempt_numbers_start_at_one():
    with pytest.raises(ValueError):
        BackoffPolicy().delay_for(0)


def test_exhausted_after_max_attempts():
    policy = BackoffPolicy(max_attempts=5)
    assert not policy.exhausted(5)
    assert policy.exhausted(6)


def test_unlimited_attempts_never_exhaust():
    assert not BackoffPolicy(max_attempts=None).exhausted(1_000)
