"""Tests for the per-webhook circuit breaker."""

import pytest

from hookrelay.webhooks import CircuitBreaker, CircuitBreakerRegistry
from hookrelay.webhooks.circuit_breaker import CircuitState


class ManualTime:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    def setup_method(self):
        self.time = ManualTime()
        self.breaker = CircuitBreaker(failure_threshold=3, reset_timeout=10.0, clock=self.time)

    def test_starts_closed(self):
        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.can_execute()

    def test_opens_at_threshold(self):
        """Three consecutive failures open the circuit."""
        self.breaker.record_failure()
        self.breaker.record_failure()
        assert self.breaker.state == CircuitState.CLOSED

        self.breaker.record_failure()
        assert self.breaker.state == CircuitState.OPEN
        assert not self.breaker.can_execute()

    def test_success_resets_consecutive_count(self):
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.breaker.record_success()
        self.breaker.record_failure()
        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.stats().consecutive_failures == 1

    def test_half_open_after_timeout(self):
        """After the reset timeout one trial attempt is allowed."""
        self.breaker.force_open()
        self.time.value = 10.0

        assert self.breaker.can_execute()
        assert self.breaker.state == CircuitState.HALF_OPEN
        assert not self.breaker.can_execute()

    def test_successful_trial_closes(self):
        self.breaker.force_open()
        self.time.value = 11.0
        self.breaker.can_execute()
        self.breaker.record_success()

        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.can_execute()

    def test_failed_trial_reopens(self):
        """A failed trial restarts the open period."""
        self.breaker.force_open()
        self.time.value = 11.0
        self.breaker.can_execute()
        self.breaker.record_failure()

        assert self.breaker.state == CircuitState.OPEN
        self.time.value = 15.0
        assert not self.breaker.can_execute()

    def test_stats(self):
        """Stats report totals and time until the next trial."""
        self.breaker.record_success()
        for _ in range(3):
            self.breaker.record_failure()
        self.time.value = 4.0

        stats = self.breaker.stats()
        assert stats.state == CircuitState.OPEN
        assert stats.total_failures == 3
        assert stats.total_successes == 1
        assert stats.retry_in_seconds == pytest.approx(6.0)

    def test_reset(self):
        self.breaker.force_open()
        self.breaker.reset()
        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.stats().retry_in_seconds is None

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_one_breaker_per_webhook(self):
        registry = CircuitBreakerRegistry(failure_threshold=1)
        assert registry.get("whk_a") is registry.get("whk_a")
        assert registry.get("whk_a") is not registry.get("whk_b")

    def test_open_circuits_sorted(self):
        """Only open circuits are listed."""
        registry = CircuitBreakerRegistry(failure_threshold=1)
        registry.get("whk_c").record_failure()
        registry.get("whk_a").record_failure()
        registry.get("whk_b").record_success()

        assert registry.open_circuits() == ["whk_a", "whk_c"]

    def test_stats_and_reset(self):
        registry = CircuitBreakerRegistry(failure_threshold=1)
        assert registry.stats("whk_a") is None

        registry.get("whk_a").record_failure()
        assert registry.stats("whk_a").state == CircuitState.OPEN

        registry.reset("whk_a")
        assert registry.stats("whk_a").state == CircuitState.CLOSED
        registry.reset("whk_unknown")
