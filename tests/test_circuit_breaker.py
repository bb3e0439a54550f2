"""
Tests for circuit breaker module.

Tests the CircuitBreaker class and its state transitions.
"""

import pytest
from unittest.mock import patch


class TestCircuitBreakerInit:
    """Tests for CircuitBreaker initialization."""

    def test_default_values(self):
        """Should initialize with sensible defaults."""
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker()
        assert cb.name == "default"
        assert cb.failure_threshold == 5
        assert cb.recovery_timeout == 30
        assert cb.failures == 0
        assert cb.state == "closed"

    def test_shared_store_breaker(self):
        """The shared Supabase breaker is named after the attempt tables."""
        from login_guard.utils.circuit_breaker import supabase_circuit

        assert supabase_circuit.name == "supabase_attempts"
        assert supabase_circuit.failure_threshold == 5


class TestCircuitBreakerStates:
    """Tests for circuit breaker state transitions."""

    def test_stays_closed_below_threshold(self):
        """Should stay closed when failures are below threshold."""
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=5)
        for _ in range(4):
            cb.record_failure()

        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_opens_at_threshold(self):
        """Should open when failures reach threshold."""
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=3)
        for _ in range(3):
            cb.record_failure()

        assert cb.state == "open"
        assert cb.can_execute() is False

    def test_transitions_to_half_open(self):
        """Should transition to half-open after recovery timeout."""
        from login_guard.utils.circuit_breaker import CircuitBreaker

        with patch("login_guard.utils.circuit_breaker.time.monotonic", return_value=100.0):
            cb = CircuitBreaker(failure_threshold=1, recovery_timeout=30)
            cb.record_failure()

        with patch("login_guard.utils.circuit_breaker.time.monotonic", return_value=129.0):
            assert cb.can_execute() is False

        with patch("login_guard.utils.circuit_breaker.time.monotonic", return_value=130.0):
            assert cb.can_execute() is True
            assert cb.state == "half-open"

    def test_closes_on_success_from_half_open(self):
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=1)
        cb.record_failure()
        cb.state = "half-open"

        cb.record_success()

        assert cb.state == "closed"
        assert cb.failures == 0

    def test_failed_trial_call_reopens(self):
        """A failure while half-open reopens regardless of threshold."""
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=10)
        cb.state = "half-open"

        cb.record_failure()

        assert cb.state == "open"

    def test_success_resets_failure_count(self):
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()

        assert cb.state == "closed"
        assert cb.failures == 1


class TestCircuitBreakerReset:
    """Tests for reset() and get_status()."""

    def test_reset(self):
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker(failure_threshold=1)
        cb.record_failure()
        cb.reset()

        assert cb.state == "closed"
        assert cb.failures == 0
        assert cb.can_execute() is True

    def test_get_status(self):
        """Status should expose name, state, failures and threshold."""
        from login_guard.utils.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker(name="store", failure_threshold=2)
        cb.record_failure()

        assert cb.get_status() == {
            "name": "store",
            "state": "closed",
            "failures": 1,
            "threshold": 2,
        }


@pytest.mark.parametrize("threshold", [1, 2, 5])
def test_opens_exactly_at_threshold(threshold):
    from login_guard.utils.circuit_breaker import CircuitBreaker

    cb = CircuitBreaker(failure_threshold=threshold)
    for _ in range(threshold - 1):
        cb.record_failure()
    assert cb.state == "closed"

    cb.record_failure()
    assert cb.state == "open"
