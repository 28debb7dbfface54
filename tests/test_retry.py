"""
Tests for the fixed-delay retry policy.
"""

import pytest

from pkgcache.core.errors import ArgumentError, Interrupted
from pkgcache.core.reliability.retry import (
    DEFAULT_DELAY,
    NETWORK_ATTEMPTS,
    RetryExhaustedError,
    RetryPolicy,
)


class Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures: int, value: str = "done", exc: type[Exception] = OSError):
        self.failures = failures
        self.value = value
        self.exc = exc
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"attempt {self.calls}")
        return self.value


class TestRetryPolicy:
    def _policy(self, **kwargs) -> tuple[RetryPolicy, list[float]]:
        sleeps: list[float] = []
        return RetryPolicy(sleep=sleeps.append, **kwargs), sleeps

    def test_defaults_match_network_budget(self):
        policy = RetryPolicy()
        assert policy.max_attempts == NETWORK_ATTEMPTS == 100
        assert policy.delay == DEFAULT_DELAY == 10.0

    def test_first_success_no_sleep(self):
        policy, sleeps = self._policy(max_attempts=3)
        op = Flaky(0)
        assert policy.call(op) == "done"
        assert op.calls == 1
        assert sleeps == []

    def test_retries_until_success_with_fixed_delay(self):
        policy, sleeps = self._policy(max_attempts=5, delay=2.5)
        op = Flaky(3)
        assert policy.call(op) == "done"
        assert op.calls == 4
        assert sleeps == [2.5, 2.5, 2.5]

    def test_exhaustion_raises_with_last_error(self):
        policy, sleeps = self._policy(max_attempts=3, delay=1.0)
        op = Flaky(10)
        with pytest.raises(RetryExhaustedError) as exc_info:
            policy.call(op)
        assert op.calls == 3
        assert exc_info.value.attempts == 3
        assert "attempt 3" in str(exc_info.value.last_error)
        assert isinstance(exc_info.value.__cause__, OSError)
        assert len(sleeps) == 2

    def test_single_attempt_never_sleeps(self):
        policy, sleeps = self._policy(max_attempts=1)
        with pytest.raises(RetryExhaustedError):
            policy.call(Flaky(1))
        assert sleeps == []

    def test_non_matching_exception_propagates(self):
        policy, sleeps = self._policy(max_attempts=5, retry_on=(OSError,))
        op = Flaky(1, exc=ValueError)
        with pytest.raises(ValueError):
            policy.call(op)
        assert op.calls == 1
        assert sleeps == []

    def test_interrupted_is_not_retried(self):
        policy, sleeps = self._policy(max_attempts=5)
        calls = []

        def op():
            calls.append(1)
            raise Interrupted(2, 130)

        with pytest.raises(Interrupted):
            policy.call(op)
        assert len(calls) == 1

    def test_argument_error_is_not_retried(self):
        policy, sleeps = self._policy(max_attempts=3, delay=0)
        op = Flaky(5, exc=ArgumentError)
        with pytest.raises(ArgumentError):
            policy.call(op)
        assert op.calls == 1
        assert sleeps == []

    def test_arguments_are_passed_through(self):
        policy, _ = self._policy(max_attempts=1)
        assert policy.call(lambda a, b=0: a + b, 2, b=3) == 5

    def test_invalid_attempts(self):
        with pytest.raises(ArgumentError):
            RetryPolicy(max_attempts=0)

    def test_negative_delay(self):
        with pytest.raises(ArgumentError):
            RetryPolicy(delay=-1)
