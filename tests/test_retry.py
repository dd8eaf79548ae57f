"""
Tests for couchbase_bootstrap/retry.py - Retry/Backoff Engine
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from couchbase_bootstrap.constants import RetryDefaults
from couchbase_bootstrap.exceptions import (
    MembershipConflictError,
    RetryExhaustedError,
    UnexpectedControlPlaneError,
    ValidationError,
)
from couchbase_bootstrap.retry import RetryPolicies, RetryPolicy, retry_call, retry_until

from conftest import SleepRecorder


# ===========================================================================
# Policy Tests
# ===========================================================================

class TestRetryPolicy:
    """Tests for RetryPolicy validation."""

    @pytest.mark.parametrize("attempts", [0, -1, 2.5])
    def test_rejects_bad_attempts(self, attempts):
        """Attempts must be a positive integer."""
        with pytest.raises(ValidationError):
            RetryPolicy(attempts, 1.0)

    def test_rejects_negative_interval(self):
        """The interval cannot be negative."""
        with pytest.raises(ValidationError):
            RetryPolicy(3, -1.0)

    def test_defaults(self, monkeypatch):
        """Without overrides the documented defaults apply."""
        for name in ('PROCESS_START', 'CLUSTER_INIT', 'REBALANCE'):
            monkeypatch.delenv(f'COUCHBASE_BOOTSTRAP_{name}_ATTEMPTS', raising=False)
            monkeypatch.delenv(f'COUCHBASE_BOOTSTRAP_{name}_INTERVAL', raising=False)

        policies = RetryPolicies.from_environment()

        assert policies.process_start == RetryPolicy(200, 5.0)
        assert policies.cluster_init == RetryPolicy(200, 5.0)
        assert policies.rebalance == RetryPolicy(
            RetryDefaults.REBALANCE_ATTEMPTS, RetryDefaults.REBALANCE_INTERVAL
        )

    def test_environment_overrides(self, monkeypatch):
        """COUCHBASE_BOOTSTRAP_* variables should override the defaults."""
        monkeypatch.setenv('COUCHBASE_BOOTSTRAP_REBALANCE_ATTEMPTS', '2')
        monkeypatch.setenv('COUCHBASE_BOOTSTRAP_PROCESS_START_INTERVAL', '0.5')

        policies = RetryPolicies.from_environment()

        assert policies.rebalance.max_attempts == 2
        assert policies.process_start.interval == 0.5

    def test_invalid_override_falls_back(self, monkeypatch):
        """An out-of-range override should be ignored."""
        monkeypatch.setenv('COUCHBASE_BOOTSTRAP_CLUSTER_INIT_ATTEMPTS', '0')
        assert RetryPolicies.from_environment().cluster_init.max_attempts == 200


# ===========================================================================
# retry_until Tests
# ===========================================================================

class TestRetryUntil:
    """Tests for retry_until."""

    def test_immediate_success_does_not_sleep(self):
        """Success on the first attempt should not sleep."""
        sleep = SleepRecorder()
        assert retry_until(lambda: True, RetryPolicy(3, 5.0), "op", sleep=sleep) == 1
        assert sleep.calls == []

    def test_sleeps_between_attempts(self):
        """Success on attempt k should sleep exactly k-1 times."""
        predicate = MagicMock(side_effect=[False, False, True])
        sleep = SleepRecorder()

        assert retry_until(predicate, RetryPolicy(5, 2.0), "op", sleep=sleep) == 3
        assert sleep.calls == [2.0, 2.0]

    def test_exhaustion(self):
        """After max_attempts falsy results RetryExhaustedError is raised."""
        predicate = MagicMock(return_value=False)
        sleep = SleepRecorder()

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_until(predicate, RetryPolicy(4, 1.0), "wait for thing", sleep=sleep)

        assert predicate.call_count == 4
        assert len(sleep.calls) == 3
        assert exc_info.value.attempts == 4
        assert "wait for thing" in str(exc_info.value)

    def test_exhaustion_attaches_last_output(self):
        """The raw output behind the last failed attempt travels with the error."""
        outputs = iter(["ERROR: Unable to connect", "ERROR: unknown pool"])
        seen = []

        def predicate():
            seen.append(next(outputs))
            return False

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_until(predicate, RetryPolicy(2, 1.0), "wait", sleep=SleepRecorder(),
                        last_output=lambda: seen[-1])

        assert exc_info.value.output == "ERROR: unknown pool"

    def test_exhaustion_without_output(self):
        """Without a last_output callable the error has no output."""
        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_until(lambda: False, RetryPolicy(1, 1.0), "wait", sleep=SleepRecorder())
        assert exc_info.value.output is None

    def test_single_attempt_never_sleeps(self):
        """A one-attempt policy should fail without sleeping."""
        sleep = SleepRecorder()
        with pytest.raises(RetryExhaustedError):
            retry_until(lambda: False, RetryPolicy(1, 9.0), "op", sleep=sleep)
        assert sleep.calls == []


# ===========================================================================
# retry_call Tests
# ===========================================================================

class TestRetryCall:
    """Tests for retry_call."""

    def test_returns_value(self):
        """The function's result should be returned."""
        assert retry_call(lambda: 42, RetryPolicy(2, 1.0), "op",
                          retry_exceptions=(MembershipConflictError,),
                          sleep=SleepRecorder()) == 42

    def test_retries_listed_exceptions(self):
        """Listed exceptions should be retried after the interval."""
        func = MagicMock(side_effect=[MembershipConflictError("busy"), "done"])
        sleep = SleepRecorder()

        result = retry_call(func, RetryPolicy(3, 30.0), "rebalance",
                            retry_exceptions=(MembershipConflictError,), sleep=sleep)

        assert result == "done"
        assert sleep.calls == [30.0]

    def test_other_exceptions_propagate(self):
        """Unlisted exceptions should propagate on the first occurrence."""
        func = MagicMock(side_effect=UnexpectedControlPlaneError("boom"))
        sleep = SleepRecorder()

        with pytest.raises(UnexpectedControlPlaneError):
            retry_call(func, RetryPolicy(3, 1.0), "op",
                       retry_exceptions=(MembershipConflictError,), sleep=sleep)

        assert func.call_count == 1
        assert sleep.calls == []

    def test_exhaustion_keeps_last_error(self):
        """RetryExhaustedError should chain and expose the last error's output."""
        errors = [MembershipConflictError(f"busy {i}", output=f"output {i}") for i in range(3)]
        func = MagicMock(side_effect=errors)

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_call(func, RetryPolicy(3, 1.0), "rebalance",
                       retry_exceptions=(MembershipConflictError,), sleep=SleepRecorder())

        error = exc_info.value
        assert error.last_error is errors[-1]
        assert error.__cause__ is errors[-1]
        assert error.output == "output 2"
        assert "busy 2" in str(error)
