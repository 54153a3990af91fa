import pytest

from fleet.domain.retry import calculate_backoff


def test_backoff_doubles_without_jitter():
    assert calculate_backoff(1, 3.0, 60.0, jitter=False) == 3.0
    assert calculate_backoff(2, 3.0, 60.0, jitter=False) == 6.0
    assert calculate_backoff(3, 3.0, 60.0, jitter=False) == 12.0


def test_backoff_is_capped():
    assert calculate_backoff(10, 3.0, 60.0, jitter=False) == 60.0
    assert calculate_backoff(10_000, 3.0, 60.0, jitter=False) == 60.0


def test_backoff_for_zero_attempts_is_base():
    assert calculate_backoff(0, 3.0, 60.0, jitter=False) == 3.0


@pytest.mark.parametrize("attempts", [1, 2, 5])
def test_jitter_stays_within_ten_percent(attempts):
    base = calculate_backoff(attempts, 3.0, 60.0, jitter=False)
    for _ in range(50):
        delay = calculate_backoff(attempts, 3.0, 60.0)
        assert base <= delay <= base * 1.1
