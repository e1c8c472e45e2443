"""Exponential backoff with jitter around any fallible operation."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TypeVar

from debate_core.resilience.failure_classifier import (
    DEFAULT_RETRYABLE_PATTERNS,
    classify_failure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.25


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """Backoff policy for ``with_retry``."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_patterns: tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS
    on_retry: Callable[[int, BaseException, float], None] | None = field(
        default=None,
        compare=False,
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def with_overrides(self, **changes: object) -> RetryOptions:
        return replace(self, **changes)  # type: ignore[arg-type]


# Preset for calls to the external text-generation capability.
LLM_RETRY_OPTIONS = RetryOptions(max_attempts=3, initial_delay=2.0, max_delay=60.0)


def compute_backoff_delay(
    attempt: int,
    options: RetryOptions,
    *,
    rng: random.Random | None = None,
) -> float:
    """Delay after failed ``attempt`` (1-based), capped and jittered by ±25%."""

    base = options.initial_delay * options.backoff_multiplier ** (attempt - 1)
    capped = min(options.max_delay, base)
    jitter = (rng or random).uniform(-JITTER_RATIO, JITTER_RATIO)
    return max(0.0, capped * (1 + jitter))


def with_retry(
    operation: Callable[[], T],
    options: RetryOptions | None = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> T:
    """Run ``operation`` and retry retryable failures with exponential backoff.

    Non-retryable errors and the error of the final attempt propagate
    immediately, without a trailing delay.
    """

    policy = options or RetryOptions()
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as error:
            classification = classify_failure(
                error,
                retryable_patterns=policy.retryable_patterns,
            )
            if not classification.retryable:
                logger.debug("Non-retryable error (%s): %s", classification.matched_rule, error)
                raise
            if attempt >= policy.max_attempts:
                logger.warning("All %d attempts failed: %s", policy.max_attempts, error)
                raise

            delay = compute_backoff_delay(attempt, policy, rng=rng)
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.2fs",
                attempt,
                policy.max_attempts,
                error,
                delay,
            )
            if policy.on_retry is not None:
                policy.on_retry(attempt, error, delay)
            sleep(delay)
            attempt += 1
