"""Retry and backoff decisions for repeated attempts on one engine.

Delay follows the formula: base_delay * multiplier^(attempt_number - 1),
capped at max_delay. A rate-limited failure carrying a retry-after hint
replaces the computed delay with the hint, unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vox_engine.config import RetryPolicy
from vox_engine.utils.errors import ClassifiedError, ErrorKind

logger = logging.getLogger(__name__)

RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.NETWORK_TIMEOUT,
    }
)


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a should_retry() call.

    delay is the exact number of seconds to wait before the next attempt
    and is 0.0 when retry is False.
    """

    retry: bool
    delay: float = 0.0
    reason: str = ""

    @classmethod
    def no(cls, reason: str) -> RetryDecision:
        return cls(retry=False, delay=0.0, reason=reason)

    @classmethod
    def after(cls, delay: float) -> RetryDecision:
        return cls(retry=True, delay=delay, reason="retryable")


def is_retryable(kind: ErrorKind) -> bool:
    return kind in RETRYABLE_KINDS


def backoff_delay(attempt_number: int, policy: RetryPolicy) -> float:
    """Compute the exponential backoff delay after a failed attempt.

    Args:
        attempt_number: 1-based number of the attempt that just failed.
        policy: Retry policy supplying base delay, multiplier, and cap.

    Returns:
        Delay in seconds, never above policy.max_delay.
    """
    exponent = max(attempt_number - 1, 0)
    delay = policy.base_delay * (policy.multiplier**exponent)
    return min(delay, policy.max_delay)


class RetryController:
    """Decides whether an engine gets another attempt.

    Stateless apart from its policy, so one instance can be shared by
    concurrent runs.
    """

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self.policy = policy or RetryPolicy()

    def should_retry(
        self,
        engine: str,
        attempt_number: int,
        error: ClassifiedError,
        elapsed: float = 0.0,
    ) -> RetryDecision:
        """Decide whether to repeat an attempt on the same engine.

        Args:
            engine: Engine identifier, used for logging.
            attempt_number: 1-based number of the attempt that just failed.
            error: Classified failure of that attempt.
            elapsed: Seconds already spent on this engine, backoff included.

        Returns:
            RetryDecision.after(delay) to retry, RetryDecision.no(reason)
            to advance to the next engine.
        """
        if not is_retryable(error.kind):
            return RetryDecision.no(f"{error.kind.value} is not retryable")

        if attempt_number >= self.policy.max_attempts:
            logger.info(
                "Retry cap reached for %s after %d attempts", engine, attempt_number
            )
            return RetryDecision.no("attempt cap reached")

        if error.kind is ErrorKind.RATE_LIMITED and error.retry_after is not None:
            delay = max(error.retry_after, 0.0)
        else:
            delay = backoff_delay(attempt_number, self.policy)

        if elapsed + delay > self.policy.engine_budget_seconds:
            logger.info(
                "Engine budget of %.1fs exhausted for %s (elapsed %.1fs, next delay %.1fs)",
                self.policy.engine_budget_seconds,
                engine,
                elapsed,
                delay,
            )
            return RetryDecision.no("engine time budget exhausted")

        logger.warning(
            "Retry %d/%d for %s after %.1fs: %s",
            attempt_number,
            self.policy.max_attempts - 1,
            engine,
            delay,
            error,
        )
        return RetryDecision.after(delay)
