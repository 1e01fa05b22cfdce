from __future__ import annotations

import logging
import random

import allure
import pytest

from issue_pilot.resilience import (
    BackoffRetry,
    RetryPolicy,
    backoff_delay,
    execute_with_retry,
    safe_execute_with_retry,
)

pytestmark = [
    allure.epic("Resilience"),
    allure.feature("Backoff Retry"),
]

NO_JITTER = RetryPolicy(max_attempts=3, base_delay_ms=100, max_delay_ms=1_000, jitter_ms=0)


class FlakyOperation:
    """Raises the queued errors in order, then returns ``value``."""

    def __init__(self, errors: list[Exception], value: str = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class AlwaysFailing:
    def __init__(self, message: str) -> None:
        self.error = RuntimeError(message)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        raise self.error


@pytest.mark.parametrize("attempt", range(1, 9))
def test_backoff_delay_without_jitter_is_capped_exponential(attempt: int) -> None:
    expected = min(1000 * 2 ** (attempt - 1), 30_000)
    assert backoff_delay(attempt, 1000, 30_000, 0) == expected


def test_backoff_delay_jitter_stays_within_bounds() -> None:
    rng = random.Random(7)  # noqa: S311
    for attempt in range(1, 6):
        capped = min(1000 * 2 ** (attempt - 1), 30_000)
        delay = backoff_delay(attempt, 1000, 30_000, 500, rng=rng)
        assert capped <= delay < capped + 500


def test_server_error_twice_then_success_uses_three_invocations() -> None:
    operation = FlakyOperation([RuntimeError("HTTP 502"), RuntimeError("HTTP 502")])
    sleeps: list[float] = []

    result = execute_with_retry(operation, NO_JITTER, sleep=sleeps.append)

    assert result == "ok"
    assert operation.calls == 3
    assert sleeps == [0.1, 0.2]


def test_terminal_error_is_raised_after_single_invocation() -> None:
    operation = AlwaysFailing("HTTP 404")
    sleeps: list[float] = []

    with pytest.raises(RuntimeError) as excinfo:
        execute_with_retry(operation, NO_JITTER, sleep=sleeps.append)

    assert excinfo.value is operation.error
    assert operation.calls == 1
    assert sleeps == []


def test_exhausted_retries_reraise_original_error() -> None:
    operation = AlwaysFailing("HTTP 503 Service Unavailable")
    sleeps: list[float] = []

    with pytest.raises(RuntimeError) as excinfo:
        execute_with_retry(operation, NO_JITTER, sleep=sleeps.append)

    assert excinfo.value is operation.error
    assert operation.calls == 3
    assert len(sleeps) == 2


def test_retry_after_overrides_policy_delay() -> None:
    policy = RetryPolicy(max_attempts=2, base_delay_ms=10, max_delay_ms=20, jitter_ms=0)
    operation = FlakyOperation([RuntimeError("rate limit exceeded, retry-after: 5")])
    delays: list[float] = []
    sleeps: list[float] = []

    result = execute_with_retry(
        operation,
        policy,
        on_retry=lambda attempt, max_attempts, error, delay_ms: delays.append(delay_ms),
        sleep=sleeps.append,
    )

    assert result == "ok"
    assert delays == [5000.0]
    assert sleeps == [5.0]


def test_on_retry_hook_runs_before_sleep() -> None:
    events: list[tuple] = []
    error = RuntimeError("connect ECONNREFUSED")
    retry = BackoffRetry(
        NO_JITTER,
        on_retry=lambda attempt, max_attempts, err, delay_ms: events.append(
            ("hook", attempt, max_attempts, err, delay_ms),
        ),
        sleep=lambda seconds: events.append(("sleep", seconds)),
    )

    assert retry.execute(FlakyOperation([error])) == "ok"
    assert events == [("hook", 1, 3, error, 100), ("sleep", 0.1)]


def test_default_hook_logs_warning(caplog) -> None:
    retry = BackoffRetry(NO_JITTER, sleep=lambda seconds: None)

    with caplog.at_level(logging.WARNING, logger="issue_pilot.resilience.retry"):
        retry.execute(FlakyOperation([RuntimeError("HTTP 502")]))

    assert "Remote server_error error, retrying in 100ms (attempt 1/3): HTTP 502" in caplog.text


def test_safe_variant_returns_none_instead_of_raising() -> None:
    operation = AlwaysFailing("HTTP 401")
    assert safe_execute_with_retry(operation, NO_JITTER, sleep=lambda seconds: None) is None
    assert operation.calls == 1


def test_safe_variant_returns_value_on_success() -> None:
    operation = FlakyOperation([RuntimeError("socket hang up")], value="done")
    assert safe_execute_with_retry(operation, NO_JITTER, sleep=lambda seconds: None) == "done"


def test_single_attempt_policy_never_sleeps() -> None:
    policy = RetryPolicy(max_attempts=1, base_delay_ms=100, max_delay_ms=100, jitter_ms=0)
    operation = AlwaysFailing("HTTP 502")
    sleeps: list[float] = []

    with pytest.raises(RuntimeError):
        execute_with_retry(operation, policy, sleep=sleeps.append)

    assert operation.calls == 1
    assert sleeps == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": 0},
        {"base_delay_ms": -1},
        {"jitter_ms": -5},
        {"base_delay_ms": 2_000, "max_delay_ms": 1_000},
    ],
)
def test_retry_policy_rejects_invalid_limits(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_retry_policy_defaults() -> None:
    policy = RetryPolicy()
    assert (policy.max_attempts, policy.base_delay_ms, policy.max_delay_ms, policy.jitter_ms) == (
        3,
        1_000,
        30_000,
        500,
    )
