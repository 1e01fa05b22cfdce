"""Failure classification and bounded retry for remote calls."""

from issue_pilot.resilience.classifier import (
    CLASSIFIER_VERSION,
    ClassifiedError,
    ErrorType,
    classify_error,
    is_recoverable_error,
)
from issue_pilot.resilience.retry import (
    BackoffRetry,
    RetryPolicy,
    backoff_delay,
    execute_with_retry,
    safe_execute_with_retry,
)

__all__ = [
    "CLASSIFIER_VERSION",
    "BackoffRetry",
    "ClassifiedError",
    "ErrorType",
    "RetryPolicy",
    "backoff_delay",
    "classify_error",
    "execute_with_retry",
    "is_recoverable_error",
    "safe_execute_with_retry",
]
