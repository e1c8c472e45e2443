"""Error taxonomy shared by the job queue, retry utility and context engine."""

from __future__ import annotations


class DebateCoreError(Exception):
    """Base class for all debate-core errors."""


class ValidationError(DebateCoreError, ValueError):
    """Malformed job payload; rejected at submission and never enqueued."""


class RetryableError(DebateCoreError):
    """Transient failure (rate limit, timeout, connection reset, 5xx)."""


class FatalError(DebateCoreError):
    """Failure that must not be retried."""


class PersistenceDegraded(DebateCoreError):
    """Durable write for context or cache failed; the triggering operation continues."""


class JobNotFoundError(DebateCoreError, LookupError):
    """Job id is unknown to the durable store."""
