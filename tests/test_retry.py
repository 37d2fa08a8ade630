"""Unit tests for with_retry."""
import pytest

from meetscribe.utils.retry import with_retry


def test_returns_after_transient_failures():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("blip")
        return "ok"

    assert with_retry(flaky, retries=3, backoff_seconds=0.1, retry_on=(ConnectionError,), sleep=sleeps.append) == "ok"
    assert sleeps == pytest.approx([0.1, 0.2])


def test_gives_up_after_retries():
    sleeps = []

    def always():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        with_retry(always, retries=2, backoff_seconds=1.0, retry_on=(ConnectionError,), sleep=sleeps.append)
    assert sleeps == [1.0, 2.0]


def test_other_errors_propagate_immediately():
    sleeps = []

    def bad():
        raise ValueError("not transient")

    with pytest.raises(ValueError):
        with_retry(bad, retries=5, retry_on=(ConnectionError,), sleep=sleeps.append)
    assert sleeps == []
