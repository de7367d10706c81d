"""Tests for retry classification and backoff."""

import random

import pytest
from helpers import make_event

from hookrelay.config import RetrySettings
from hookrelay.models import DeliveryResult, FailureClass, WebhookDelivery
from hookrelay.webhooks import RetryPolicy, RetryScheduler
from hookrelay.webhooks.retry import Clock, RetryAction, SystemClock


def failure(failure_class: FailureClass, status_code: int | None = None) -> DeliveryResult:
    return DeliveryResult.failure(failure_class, "boom", status_code=status_code)


def delivery_after(attempts: int, max_attempts: int = 3) -> WebhookDelivery:
    delivery = WebhookDelivery.create(make_event(), "sub_1", "whk_1", max_attempts)
    delivery.attempts = attempts
    return delivery


class TestIsRetryable:
    """Tests for failure classification."""

    def setup_method(self):
        self.scheduler = RetryScheduler(RetryPolicy(jitter_factor=0))

    @pytest.mark.parametrize(
        "failure_class",
        [
            FailureClass.NETWORK_ERROR,
            FailureClass.TIMEOUT,
            FailureClass.CIRCUIT_OPEN,
            FailureClass.INTERNAL_ERROR,
        ],
    )
    def test_transient_failures(self, failure_class):
        """Transport and internal failures may succeed on a later attempt."""
        assert self.scheduler.is_retryable(failure(failure_class))

    @pytest.mark.parametrize(
        "failure_class", [FailureClass.CONFIG_INVALID, FailureClass.UNSUPPORTED_FORMAT]
    )
    def test_permanent_failures(self, failure_class):
        """Config and format problems would fail the same way again."""
        assert not self.scheduler.is_retryable(failure(failure_class))

    @pytest.mark.parametrize(("status", "expected"), [(500, True), (503, True), (599, True)])
    def test_server_errors(self, status, expected):
        assert self.scheduler.is_retryable(failure(FailureClass.HTTP_STATUS, status)) is expected

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410, 422])
    def test_client_errors(self, status):
        """4xx responses other than 429 are final."""
        assert not self.scheduler.is_retryable(failure(FailureClass.HTTP_STATUS, status))

    def test_rate_limited_is_retryable_by_default(self):
        assert self.scheduler.is_retryable(failure(FailureClass.HTTP_STATUS, 429))

    def test_rate_limited_can_be_disabled(self):
        """retry_on_429=False makes 429 final."""
        scheduler = RetryScheduler(RetryPolicy(retry_on_429=False))
        assert not scheduler.is_retryable(failure(FailureClass.HTTP_STATUS, 429))

    def test_success_is_not_retryable(self):
        assert not self.scheduler.is_retryable(DeliveryResult.ok(200, 1.0))


class TestBackoffDelay:
    """Tests for backoff_delay."""

    def test_exponential_without_jitter(self):
        """Delays double from the base."""
        scheduler = RetryScheduler(RetryPolicy(base_delay_s=1.0, jitter_factor=0))
        assert [scheduler.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped_at_max_delay(self):
        scheduler = RetryScheduler(
            RetryPolicy(base_delay_s=1.0, max_delay_s=10.0, jitter_factor=0)
        )
        assert scheduler.backoff_delay(10) == 10.0

    def test_jitter_within_bounds(self):
        """Jitter only lengthens a delay, by at most jitter_factor."""
        scheduler = RetryScheduler(
            RetryPolicy(base_delay_s=2.0, jitter_factor=0.5), rng=random.Random(42)
        )
        for _ in range(100):
            delay = scheduler.backoff_delay(2)
            assert 4.0 <= delay <= 6.0

    def test_delays_never_decrease(self):
        """Successive delays are non-decreasing even with full jitter."""
        scheduler = RetryScheduler(
            RetryPolicy(base_delay_s=0.5, max_delay_s=60.0, jitter_factor=1.0),
            rng=random.Random(1),
        )
        for _ in range(20):
            delays = [scheduler.backoff_delay(n) for n in range(1, 10)]
            assert delays == sorted(delays)

    def test_same_seed_same_delays(self):
        """Jitter is reproducible with a seeded random source."""
        policy = RetryPolicy(jitter_factor=0.3)
        first = RetryScheduler(policy, rng=random.Random(9))
        second = RetryScheduler(policy, rng=random.Random(9))
        assert [first.backoff_delay(n) for n in range(1, 5)] == [
            second.backoff_delay(n) for n in range(1, 5)
        ]


class TestDecide:
    """Tests for the retry decision."""

    def setup_method(self):
        self.scheduler = RetryScheduler(RetryPolicy(base_delay_s=1.0, jitter_factor=0))

    def test_success_delivers(self):
        decision = self.scheduler.decide(delivery_after(1), DeliveryResult.ok(200, 1.0))
        assert decision.action == RetryAction.DELIVER

    def test_retry_with_backoff(self):
        """A retryable failure with budget left is retried."""
        decision = self.scheduler.decide(
            delivery_after(2), failure(FailureClass.HTTP_STATUS, 502)
        )
        assert decision.action == RetryAction.RETRY
        assert decision.delay_s == 2.0
        assert decision.reason == "Retry 3/3 in 2.00s"

    def test_abandon_when_exhausted(self):
        """No retry once attempts reach the budget."""
        decision = self.scheduler.decide(delivery_after(3), failure(FailureClass.TIMEOUT))
        assert decision.action == RetryAction.ABANDON
        assert decision.reason == "Attempts exhausted (3/3): boom"

    def test_abandon_non_retryable_immediately(self):
        """Permanent failures are abandoned on the first attempt."""
        decision = self.scheduler.decide(
            delivery_after(1), failure(FailureClass.HTTP_STATUS, 404)
        )
        assert decision.action == RetryAction.ABANDON
        assert decision.reason == "Non-retryable failure (http_status): boom"

    def test_single_attempt_budget(self):
        """max_attempts=1 never retries."""
        decision = self.scheduler.decide(
            delivery_after(1, max_attempts=1), failure(FailureClass.NETWORK_ERROR)
        )
        assert decision.action == RetryAction.ABANDON


class TestRetryPolicy:
    """Tests for RetryPolicy construction."""

    def test_from_settings(self):
        settings = RetrySettings(
            base_delay_seconds=0.25, max_delay_seconds=5, jitter_factor=0.2, retry_on_429=False
        )
        policy = RetryPolicy.from_settings(settings)
        assert policy.base_delay_s == 0.25
        assert policy.max_delay_s == 5
        assert policy.jitter_factor == 0.2
        assert policy.retry_on_429 is False

    def test_jitter_factor_bounded(self):
        """jitter_factor above 1 would break delay monotonicity."""
        with pytest.raises(ValueError):
            RetryPolicy(jitter_factor=1.5)


class TestSystemClock:
    """Tests for the default clock."""

    def test_is_a_clock(self):
        assert isinstance(SystemClock(), Clock)

    def test_now_is_utc(self):
        assert SystemClock().now().utcoffset().total_seconds() == 0

    @pytest.mark.asyncio
    async def test_sleep_negative_returns(self):
        """Negative delays do not raise."""
        await SystemClock().sleep(-1)
