from datetime import datetime, timedelta

from qbank_attempts.services.timeout import elapsed_seconds, is_timed_out

START = datetime(2024, 3, 1, 9, 0, 0)


def test_zero_limit_never_times_out():
    assert is_timed_out(START, 0, START + timedelta(days=30)) is False


def test_limit_is_exclusive():
    assert is_timed_out(START, 10, START + timedelta(minutes=10)) is False
    assert is_timed_out(START, 10, START + timedelta(minutes=10, seconds=1)) is True


def test_elapsed_seconds():
    assert elapsed_seconds(START, START + timedelta(minutes=2, seconds=5)) == 125
    # clock skew never yields a negative duration
    assert elapsed_seconds(START, START - timedelta(seconds=3)) == 0


def test_elapsed_seconds_rounds_half_up():
    assert elapsed_seconds(START, START + timedelta(seconds=2, milliseconds=500)) == 3
    assert elapsed_seconds(START, START + timedelta(seconds=3, milliseconds=499)) == 3
