"""Retry/backoff utility and deterministic failure classification."""

from debate_core.resilience.failure_classifier import (
    DEFAULT_RETRYABLE_PATTERNS,
    FailureClass,
    FailureClassification,
    classify_failure,
)
from debate_core.resilience.retry import (
    LLM_RETRY_OPTIONS,
    RetryOptions,
    compute_backoff_delay,
    with_retry,
)

__all__ = [
    "DEFAULT_RETRYABLE_PATTERNS",
    "LLM_RETRY_OPTIONS",
    "FailureClass",
    "FailureClassification",
    "RetryOptions",
    "classify_failure",
    "compute_backoff_delay",
    "with_retry",
]
