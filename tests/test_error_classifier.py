from __future__ import annotations

import allure
import pytest

from issue_pilot.resilience import (
    CLASSIFIER_VERSION,
    ErrorType,
    classify_error,
    is_recoverable_error,
)

pytestmark = [
    allure.epic("Resilience"),
    allure.feature("Error Classification"),
]


def test_classifier_version_is_stable() -> None:
    assert CLASSIFIER_VERSION == 1


def test_rate_limit_extracts_retry_after_seconds() -> None:
    classified = classify_error(RuntimeError("API rate limit exceeded. Retry-After: 5"))
    assert classified.error_type == ErrorType.RATE_LIMIT
    assert classified.recoverable is True
    assert classified.retry_after_ms == 5000
    assert classified.matched_rule == "rate_limit"


def test_rate_limit_without_hint_has_no_retry_after() -> None:
    classified = classify_error(RuntimeError("HTTP 429: Too Many Requests"))
    assert classified.error_type == ErrorType.RATE_LIMIT
    assert classified.retry_after_ms is None


def test_retry_after_accepts_space_separator() -> None:
    classified = classify_error(RuntimeError("rate limit hit, retry after 30"))
    assert classified.retry_after_ms == 30_000


@pytest.mark.parametrize(
    ("message", "expected", "recoverable"),
    [
        ("HTTP 502: Bad Gateway", ErrorType.SERVER_ERROR, True),
        ("HTTP 503", ErrorType.SERVER_ERROR, True),
        ("upstream said: gateway timeout", ErrorType.SERVER_ERROR, True),
        ("connect ETIMEDOUT 140.82.112.6:443", ErrorType.NETWORK_ERROR, True),
        ("read ECONNRESET", ErrorType.NETWORK_ERROR, True),
        ("socket hang up", ErrorType.NETWORK_ERROR, True),
        ("gh issue view timed out after 10s", ErrorType.NETWORK_ERROR, True),
        ("HTTP 401: Bad credentials", ErrorType.AUTH_ERROR, False),
        ("HTTP 403: Resource not accessible", ErrorType.AUTH_ERROR, False),
        ("HTTP 404", ErrorType.NOT_FOUND, False),
        ("Could not resolve to an Issue: not found", ErrorType.NOT_FOUND, False),
        ("HTTP 422: Validation Failed", ErrorType.VALIDATION, False),
        ("something odd happened", ErrorType.UNKNOWN, False),
    ],
)
def test_classifier_maps_messages(message: str, expected: ErrorType, recoverable: bool) -> None:
    classified = classify_error(RuntimeError(message))
    assert classified.error_type == expected
    assert classified.recoverable is recoverable
    assert is_recoverable_error(RuntimeError(message)) is recoverable


def test_rate_limit_wins_over_auth_status() -> None:
    classified = classify_error(RuntimeError("HTTP 403: API rate limit exceeded"))
    assert classified.error_type == ErrorType.RATE_LIMIT


def test_server_error_wins_over_not_found() -> None:
    classified = classify_error(RuntimeError("502 while looking up resource: not found"))
    assert classified.error_type == ErrorType.SERVER_ERROR


def test_getaddrinfo_enotfound_is_network_not_missing_resource() -> None:
    classified = classify_error(OSError("getaddrinfo ENOTFOUND api.github.com"))
    assert classified.error_type == ErrorType.NETWORK_ERROR


@pytest.mark.parametrize("value", [None, "HTTP 502", 502, {"message": "rate limit"}])
def test_non_exception_values_are_unknown(value: object) -> None:
    classified = classify_error(value)
    assert classified.error_type == ErrorType.UNKNOWN
    assert classified.recoverable is False


def test_event_details_include_match_diagnostics() -> None:
    details = classify_error(RuntimeError("HTTP 404")).to_event_details()
    assert details == {
        "classifier_version": CLASSIFIER_VERSION,
        "error_type": "not_found",
        "recoverable": False,
        "retry_after_ms": None,
        "matched_rule": "not_found",
        "matched_pattern": r"\b404\b",
    }
