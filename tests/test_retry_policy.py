import random
from datetime import timedelta

import pytest

from notification_dispatch.utils.retry import MAX_ATTEMPTS, RETRY_DELAYS_SECONDS, backoff, base_delay, is_terminal


@pytest.mark.parametrize("attempt,expected", [(1, 10), (2, 30), (3, 120), (4, 600), (5, 1800), (9, 1800)])
def test_base_delay_table(attempt, expected):
    assert base_delay(attempt) == expected


def test_backoff_stays_within_jitter_bounds():
    rng = random.Random(42)
    for attempt in range(1, 6):
        base = RETRY_DELAYS_SECONDS[attempt - 1]
        for _ in range(200):
            delay = backoff(attempt, rng).total_seconds()
            assert base * 0.8 <= delay <= base * 1.2


def test_backoff_uses_extremes_of_jitter(mocker):
    rng = mocker.Mock()
    rng.uniform.side_effect = lambda low, high: low
    assert backoff(1, rng) == timedelta(seconds=8)
    rng.uniform.side_effect = lambda low, high: high
    assert backoff(1, rng) == timedelta(seconds=12)


def test_backoff_never_decreases_across_attempts():
    rng = random.Random(7)
    worst_previous = timedelta(0)
    for attempt in range(1, MAX_ATTEMPTS + 1):
        samples = [backoff(attempt, rng) for _ in range(100)]
        assert min(samples) >= worst_previous
        worst_previous = max(samples)


def test_is_terminal_at_max_attempts():
    assert MAX_ATTEMPTS == 5
    assert not is_terminal(4)
    assert is_terminal(5)
    assert is_terminal(6)
