"""Tests for the retry/backoff controller."""

import logging

import pytest

from vox_engine.config import RetryPolicy
from vox_engine.utils.errors import ClassifiedError, ErrorKind
from vox_engine.utils.retry import (
    RetryController,
    RetryDecision,
    backoff_delay,
    is_retryable,
)


def _error(kind: ErrorKind, retry_after: float | None = None) -> ClassifiedError:
    return ClassifiedError(kind, f"{kind.value} detail", retry_after)


class TestBackoffDelay:
    """Tests for exponential backoff computation."""

    def test_exponential_progression(self) -> None:
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=30.0)
        delays = [backoff_delay(n, policy) for n in (1, 2, 3, 4)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self) -> None:
        policy = RetryPolicy(base_delay=1.0, multiplier=10.0, max_delay=5.0)
        assert backoff_delay(3, policy) == 5.0

    def test_custom_multiplier(self) -> None:
        policy = RetryPolicy(base_delay=0.5, multiplier=3.0)
        assert backoff_delay(2, policy) == pytest.approx(1.5)


class TestRetryableKinds:
    """Tests for which error kinds allow a repeat attempt."""

    @pytest.mark.parametrize(
        "kind",
        [ErrorKind.RATE_LIMITED, ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.NETWORK_TIMEOUT],
    )
    def test_transient_kinds_are_retryable(self, kind: ErrorKind) -> None:
        assert is_retryable(kind)

    @pytest.mark.parametrize(
        "kind",
        [
            ErrorKind.AUTHENTICATION,
            ErrorKind.UNSUPPORTED_LOCALE,
            ErrorKind.VALIDATION_FAILURE,
            ErrorKind.QUOTA_EXCEEDED,
            ErrorKind.NETWORK_UNREACHABLE,
            ErrorKind.UNKNOWN,
        ],
    )
    def test_permanent_kinds_always_advance(self, kind: ErrorKind) -> None:
        controller = RetryController()
        decision = controller.should_retry("openai", 1, _error(kind))
        assert decision.retry is False
        assert decision.delay == 0.0


class TestRetryController:
    """Tests for should_retry decisions."""

    def test_retry_after_backoff(self) -> None:
        controller = RetryController(RetryPolicy(base_delay=1.0, multiplier=2.0))
        decision = controller.should_retry("revai", 2, _error(ErrorKind.SERVICE_UNAVAILABLE))
        assert decision == RetryDecision.after(2.0)

    def test_rate_limit_hint_overrides_backoff_exactly(self) -> None:
        controller = RetryController(RetryPolicy(base_delay=1.0, max_delay=5.0))
        decision = controller.should_retry("openai", 1, _error(ErrorKind.RATE_LIMITED, 7.5))
        assert decision.retry is True
        assert decision.delay == 7.5

    def test_rate_limit_without_hint_uses_backoff(self) -> None:
        controller = RetryController(RetryPolicy(base_delay=0.25))
        decision = controller.should_retry("openai", 1, _error(ErrorKind.RATE_LIMITED))
        assert decision.delay == 0.25

    def test_attempt_cap(self) -> None:
        controller = RetryController(RetryPolicy(max_attempts=3))
        error = _error(ErrorKind.NETWORK_TIMEOUT)
        assert controller.should_retry("openai", 1, error).retry is True
        assert controller.should_retry("openai", 2, error).retry is True
        assert controller.should_retry("openai", 3, error).retry is False

    def test_single_attempt_policy_never_retries(self) -> None:
        controller = RetryController(RetryPolicy(max_attempts=1))
        decision = controller.should_retry("openai", 1, _error(ErrorKind.SERVICE_UNAVAILABLE))
        assert decision.retry is False

    def test_engine_budget_exhausted(self) -> None:
        controller = RetryController(RetryPolicy(engine_budget_seconds=10.0, base_delay=4.0))
        decision = controller.should_retry(
            "openai", 1, _error(ErrorKind.SERVICE_UNAVAILABLE), elapsed=7.0
        )
        assert decision.retry is False
        assert "budget" in decision.reason

    def test_default_policy(self) -> None:
        controller = RetryController()
        assert controller.policy.max_attempts == 3

    def test_logs_retry_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        controller = RetryController(RetryPolicy(base_delay=0.5))
        with caplog.at_level(logging.WARNING):
            controller.should_retry("speechmatics", 1, _error(ErrorKind.SERVICE_UNAVAILABLE))
        assert "Retry 1/2 for speechmatics after 0.5s" in caplog.text

    def test_no_log_for_permanent_failure(self, caplog: pytest.LogCaptureFixture) -> None:
        controller = RetryController()
        with caplog.at_level(logging.WARNING):
            controller.should_retry("openai", 1, _error(ErrorKind.AUTHENTICATION))
        assert "Retry" not in caplog.text
