"""Deterministic failure classification for remote-call retry policy."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

CLASSIFIER_VERSION = 1


class ErrorType(str, Enum):
    """Normalized failure types reported by the classifier."""

    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    AUTH_ERROR = "auth_error"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


_RATE_LIMIT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"rate limit", re.IGNORECASE),
    re.compile(r"too many requests", re.IGNORECASE),
)
_RETRY_AFTER_PATTERN = re.compile(r"retry.?after[:\s]+(\d+)", re.IGNORECASE)
_SERVER_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b502\b"),
    re.compile(r"\b503\b"),
    re.compile(r"\b504\b"),
    re.compile(r"bad gateway", re.IGNORECASE),
    re.compile(r"service unavailable", re.IGNORECASE),
    re.compile(r"gateway timeout", re.IGNORECASE),
)
_NETWORK_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ETIMEDOUT"),
    re.compile(r"ECONNRESET"),
    re.compile(r"ECONNREFUSED"),
    re.compile(r"ENOTFOUND"),
    re.compile(r"ENETUNREACH"),
    re.compile(r"socket hang up", re.IGNORECASE),
    re.compile(r"network error", re.IGNORECASE),
    re.compile(r"connection reset", re.IGNORECASE),
    re.compile(r"timed out", re.IGNORECASE),
    re.compile(r"timeout", re.IGNORECASE),
)
_AUTH_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b401\b"),
    re.compile(r"\b403\b"),
    re.compile(r"unauthorized", re.IGNORECASE),
    re.compile(r"authentication failed", re.IGNORECASE),
    re.compile(r"bad credentials", re.IGNORECASE),
)
_NOT_FOUND_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b404\b"),
    re.compile(r"not found", re.IGNORECASE),
)
_VALIDATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b422\b"),
    re.compile(r"validation failed", re.IGNORECASE),
    re.compile(r"unprocessable", re.IGNORECASE),
)

# Priority order; first matching rule wins. Rate limits are handled separately
# because they may carry a retry-after hint.
_RULES: tuple[tuple[str, ErrorType, bool, tuple[re.Pattern[str], ...]], ...] = (
    ("server_error", ErrorType.SERVER_ERROR, True, _SERVER_ERROR_PATTERNS),
    ("network_error", ErrorType.NETWORK_ERROR, True, _NETWORK_ERROR_PATTERNS),
    ("auth_error", ErrorType.AUTH_ERROR, False, _AUTH_ERROR_PATTERNS),
    ("not_found", ErrorType.NOT_FOUND, False, _NOT_FOUND_PATTERNS),
    ("validation", ErrorType.VALIDATION, False, _VALIDATION_PATTERNS),
)


@dataclass(slots=True, frozen=True)
class ClassifiedError:
    """Normalized failure classification result."""

    error_type: ErrorType
    recoverable: bool
    retry_after_ms: int | None = None
    matched_rule: str = "fallback_unknown"
    matched_pattern: str | None = None

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for retry logs."""

        return {
            "classifier_version": CLASSIFIER_VERSION,
            "error_type": self.error_type.value,
            "recoverable": self.recoverable,
            "retry_after_ms": self.retry_after_ms,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_error(error: object) -> ClassifiedError:
    """Classify a failure by its message text.

    Only exception instances are inspected; any other value is ``unknown``.
    """

    if not isinstance(error, BaseException):
        return ClassifiedError(error_type=ErrorType.UNKNOWN, recoverable=False)

    message = str(error)

    pattern = _first_match(message, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return ClassifiedError(
            error_type=ErrorType.RATE_LIMIT,
            recoverable=True,
            retry_after_ms=_retry_after_ms(message),
            matched_rule="rate_limit",
            matched_pattern=pattern,
        )

    for rule_name, error_type, recoverable, patterns in _RULES:
        pattern = _first_match(message, patterns)
        if pattern is not None:
            return ClassifiedError(
                error_type=error_type,
                recoverable=recoverable,
                matched_rule=rule_name,
                matched_pattern=pattern,
            )

    return ClassifiedError(error_type=ErrorType.UNKNOWN, recoverable=False)


def is_recoverable_error(error: object) -> bool:
    """Return True when the failure is expected to be transient."""

    return classify_error(error).recoverable


def _retry_after_ms(message: str) -> int | None:
    match = _RETRY_AFTER_PATTERN.search(message)
    if match is None:
        return None
    return int(match.group(1)) * 1000


def _first_match(haystack: str, patterns: tuple[re.Pattern[str], ...]) -> str | None:
    for pattern in patterns:
        if pattern.search(haystack):
            return pattern.pattern
    return None
