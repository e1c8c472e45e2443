"""Deterministic error classification for retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from debate_core.errors import FatalError, RetryableError, ValidationError

FAILURE_CLASSIFIER_VERSION = 1

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate_limit_exceeded",
    "rate limit",
    "too many requests",
    "429",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "etimedout",
    "timeout",
    "timed out",
)
_CONNECTION_PATTERNS: tuple[str, ...] = (
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "network error",
)
_SERVER_ERROR_PATTERNS: tuple[str, ...] = (
    "server_error",
    "500",
    "502",
    "503",
    "504",
)

DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    *_RATE_LIMIT_PATTERNS,
    *_TIMEOUT_PATTERNS,
    *_CONNECTION_PATTERNS,
    *_SERVER_ERROR_PATTERNS,
)

STORAGE_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "database is locked",
    "database table is locked",
    "disk i/o error",
    "unable to open database file",
)


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class == FailureClass.RETRYABLE

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for job events."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_failure(
    error: BaseException,
    *,
    retryable_patterns: tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS,
) -> FailureClassification:
    """Classify an error as retryable or fatal.

    Explicit taxonomy wins over pattern matching: ``RetryableError`` always
    retries, ``ValidationError`` and ``FatalError`` never do. Anything else is
    matched by case-insensitive substring against ``retryable_patterns``.
    """

    if isinstance(error, ValidationError):
        return FailureClassification(
            failure_class=FailureClass.VALIDATION,
            matched_rule="validation_error",
            matched_pattern=None,
        )
    if isinstance(error, FatalError):
        return FailureClassification(
            failure_class=FailureClass.FATAL,
            matched_rule="fatal_error",
            matched_pattern=None,
        )
    if isinstance(error, RetryableError):
        return FailureClassification(
            failure_class=FailureClass.RETRYABLE,
            matched_rule="retryable_error",
            matched_pattern=None,
        )

    pattern = _first_match(_normalize_error(error), retryable_patterns)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.RETRYABLE,
            matched_rule="retryable_pattern",
            matched_pattern=pattern,
        )
    return FailureClassification(
        failure_class=FailureClass.FATAL,
        matched_rule="fallback_fatal",
        matched_pattern=None,
    )


def _normalize_error(error: BaseException) -> str:
    code = getattr(error, "code", None)
    parts = [type(error).__name__, str(error)]
    if code is not None:
        parts.append(str(code))
    return " ".join(parts).lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern.lower() in haystack:
            return pattern
    return None
