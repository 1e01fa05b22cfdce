"""Bounded exponential-backoff retry for fallible remote operations."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from issue_pilot.resilience.classifier import classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, int, Exception, float], None]
"""Hook signature: ``(attempt, max_attempts, error, delay_ms)``."""


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Immutable retry limits.

    Attempt 1 waits ``base_delay_ms`` before the second try, then the delay
    doubles up to ``max_delay_ms``. ``jitter_ms`` adds a uniform random
    offset in ``[0, jitter_ms)`` on top of the capped delay.
    """

    max_attempts: int = 3
    base_delay_ms: int = 1_000
    max_delay_ms: int = 30_000
    jitter_ms: int = 500

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0 or self.jitter_ms < 0:
            raise ValueError("Retry delays must be >= 0.")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms.")


def backoff_delay(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    jitter_ms: float,
    rng: random.Random | None = None,
) -> float:
    """Delay in milliseconds to wait after the given failed attempt (1-indexed)."""

    exponential = base_delay_ms * (2 ** max(attempt - 1, 0))
    capped = min(exponential, max_delay_ms)
    if jitter_ms <= 0:
        return capped
    source = rng or random  # noqa: S311
    return capped + source.random() * jitter_ms


class BackoffRetry:
    """Drives repeated invocation of one operation under a retry policy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        on_retry: OnRetry | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.on_retry = on_retry or _log_retry
        self._sleep = sleep
        self._random = rng or random.Random()  # noqa: S311

    def execute(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` until it succeeds, fails terminally, or attempts run out.

        The final error is re-raised as-is, never wrapped.
        """

        attempt = 1
        while True:
            try:
                return operation()
            except Exception as error:
                classification = classify_error(error)
                if not classification.recoverable or attempt >= self.policy.max_attempts:
                    raise

                if classification.retry_after_ms is not None:
                    delay_ms = float(classification.retry_after_ms)
                else:
                    delay_ms = self.compute_delay(attempt)

                self.on_retry(attempt, self.policy.max_attempts, error, delay_ms)
                self._sleep(delay_ms / 1000.0)
                attempt += 1

    def execute_or_none(self, operation: Callable[[], T]) -> T | None:
        """Like :meth:`execute` but return ``None`` on any final failure."""

        try:
            return self.execute(operation)
        except Exception:  # noqa: BLE001
            logger.debug("Operation failed after retries", exc_info=True)
            return None

    def compute_delay(self, attempt: int) -> float:
        return backoff_delay(
            attempt,
            self.policy.base_delay_ms,
            self.policy.max_delay_ms,
            self.policy.jitter_ms,
            rng=self._random,
        )


def execute_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    on_retry: OnRetry | None = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> T:
    """Run ``operation`` with retries for transient failures; raise the last error."""

    return BackoffRetry(policy, on_retry=on_retry, sleep=sleep, rng=rng).execute(operation)


def safe_execute_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    on_retry: OnRetry | None = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> T | None:
    """Run ``operation`` with retries; return ``None`` instead of raising."""

    return BackoffRetry(
        policy,
        on_retry=on_retry,
        sleep=sleep,
        rng=rng,
    ).execute_or_none(operation)


def _log_retry(attempt: int, max_attempts: int, error: Exception, delay_ms: float) -> None:
    classification = classify_error(error)
    logger.warning(
        "Remote %s error, retrying in %dms (attempt %d/%d): %s",
        classification.error_type.value,
        round(delay_ms),
        attempt,
        max_attempts,
        str(error)[:100],
    )
