"""Tests for utils/retry.py."""

from __future__ import annotations

import pytest

from saga_worker.utils.retry import BackoffSchedule, retry_until


class TestBackoffSchedule:
    def test_exponential_from_base(self):
        assert BackoffSchedule(base_seconds=2).delays(3) == [2, 4, 8]

    def test_capped(self):
        schedule = BackoffSchedule(base_seconds=2, max_seconds=5)
        assert schedule.delays(4) == [2, 4, 5, 5]

    def test_attempts_start_at_one(self):
        with pytest.raises(ValueError):
            BackoffSchedule(base_seconds=2).delay_for(0)


class TestRetryUntil:
    """Predicate-driven retries on an explicit delay schedule."""

    def test_returns_first_satisfying_result(self):
        results = iter([None, None, "ready"])
        sleeps: list[float] = []
        value = retry_until(lambda: next(results), lambda r: r is not None, [0.5, 1, 2], sleep=sleeps.append)
        assert value == "ready"
        assert sleeps == [0.5, 1]

    def test_returns_last_result_when_exhausted(self):
        calls: list[int] = []

        def fn():
            calls.append(1)
            return len(calls)

        sleeps: list[float] = []
        value = retry_until(fn, lambda r: False, [0.5, 1, 2], sleep=sleeps.append)
        assert value == 4
        assert sleeps == [0.5, 1, 2]

    def test_no_delays_single_call(self):
        calls: list[int] = []
        retry_until(lambda: calls.append(1), lambda r: False, [], sleep=lambda _s: None)
        assert len(calls) == 1

    def test_retries_listed_exceptions(self):
        attempts = iter([ConnectionError("down"), ConnectionError("down"), "task-1"])

        def fn():
            item = next(attempts)
            if isinstance(item, Exception):
                raise item
            return item

        value = retry_until(fn, lambda r: True, [0.5, 1], retry_on=(ConnectionError,), sleep=lambda _s: None)
        assert value == "task-1"

    def test_reraises_when_exception_persists(self):
        def fn():
            raise ConnectionError("still down")

        with pytest.raises(ConnectionError):
            retry_until(fn, lambda r: True, [0.5], retry_on=(ConnectionError,), sleep=lambda _s: None)

    def test_unlisted_exception_not_retried(self):
        calls: list[int] = []

        def fn():
            calls.append(1)
            raise KeyError("boom")

        with pytest.raises(KeyError):
            retry_until(fn, lambda r: True, [0.5, 1], retry_on=(ConnectionError,), sleep=lambda _s: None)
        assert len(calls) == 1
