"""Use-case service for the job queue consumed by the presentation layer."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from debate_core.errors import JobNotFoundError
from debate_core.jobs.models import (
    JobCreate,
    JobDetails,
    JobPayload,
    JobStatus,
    JobStatusResponse,
    JobType,
    parse_job_type,
    parse_payload,
)
from debate_core.jobs.repository import JobRepository
from debate_core.resilience.failure_classifier import STORAGE_RETRYABLE_PATTERNS
from debate_core.resilience.retry import RetryOptions, with_retry
from debate_core.storage.common import utc_now

logger = logging.getLogger(__name__)

SUBMIT_RETRY_OPTIONS = RetryOptions(
    max_attempts=3,
    initial_delay=0.2,
    max_delay=2.0,
    retryable_patterns=STORAGE_RETRYABLE_PATTERNS,
)


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    """How long terminal jobs are kept before cleanup."""

    completed: timedelta = timedelta(hours=1)
    failed: timedelta = timedelta(hours=24)
    cancelled: timedelta = timedelta(hours=24)


@dataclass(slots=True)
class CleanupReport:
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.failed + self.cancelled


class JobQueue:
    """Submit, poll and cancel jobs; writes go straight to the durable queue."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        default_max_attempts: int = 3,
        retention: RetentionPolicy | None = None,
        submit_retry: RetryOptions = SUBMIT_RETRY_OPTIONS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.default_max_attempts = default_max_attempts
        self.retention = retention or RetentionPolicy()
        self.submit_retry = submit_retry
        self._sleep = sleep
        self._clock = clock

    def submit(  # noqa: PLR0913
        self,
        job_type: JobType | str,
        payload: Mapping[str, Any] | JobPayload,
        *,
        job_id: str | None = None,
        conversation_id: str | None = None,
        user_id: str | None = None,
        priority: int | None = None,
        max_attempts: int | None = None,
    ) -> str:
        """Validate and persist a pending job; returns its id.

        Raises ``ValidationError`` for malformed input. Resubmitting an
        existing ``job_id`` returns it without creating a second job.
        """

        kind = parse_job_type(job_type)
        typed = parse_payload(kind, payload)
        command = JobCreate(
            job_type=kind,
            payload=typed,
            job_id=job_id,
            priority=priority,
            max_attempts=max_attempts or self.default_max_attempts,
            conversation_id=conversation_id,
            user_id=user_id,
        )
        view, created = with_retry(
            lambda: self.repository.enqueue(command),
            self.submit_retry,
            sleep=self._sleep,
        )
        if created:
            logger.info("Submitted job %s (%s)", view.job_id, kind.value)
        else:
            logger.info("Job %s already exists; submission ignored", view.job_id)
        return view.job_id

    def get_status(self, job_id: str) -> JobStatusResponse | None:
        job = self.repository.get_job(job_id=job_id)
        return job.status_response() if job is not None else None

    def cancel(self, job_id: str) -> bool:
        """Cancel a pending or processing job.

        A processing job keeps running; its eventual result is discarded.
        """

        cancelled = self.repository.cancel_job(job_id=job_id)
        if cancelled:
            logger.info("Cancelled job %s", job_id)
        return cancelled

    def list_conversation_jobs(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
    ) -> list[JobStatusResponse]:
        jobs = self.repository.list_jobs(conversation_id=conversation_id, limit=limit)
        return [job.status_response() for job in jobs]

    def get_job_details(self, job_id: str) -> JobDetails:
        details = self.repository.get_job_details(job_id=job_id)
        if details is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return details

    def update_progress(self, job_id: str, progress: int) -> bool:
        return self.repository.update_progress(job_id=job_id, progress=progress)

    def cleanup_terminal_jobs(self, older_than: timedelta = timedelta(hours=24)) -> int:
        """Delete completed, failed and cancelled jobs finished before ``older_than``."""

        deleted = self.repository.delete_terminal_jobs(completed_before=self._clock() - older_than)
        if deleted:
            logger.info("Cleaned up %d terminal job(s) older than %s", deleted, older_than)
        return deleted

    def apply_retention(self) -> CleanupReport:
        """Cleanup with per-status retention windows."""

        now = self._clock()
        report = CleanupReport(
            completed=self.repository.delete_terminal_jobs(
                completed_before=now - self.retention.completed,
                statuses=(JobStatus.COMPLETED,),
            ),
            failed=self.repository.delete_terminal_jobs(
                completed_before=now - self.retention.failed,
                statuses=(JobStatus.FAILED,),
            ),
            cancelled=self.repository.delete_terminal_jobs(
                completed_before=now - self.retention.cancelled,
                statuses=(JobStatus.CANCELLED,),
            ),
        )
        if report.total:
            logger.info(
                "Retention removed %d completed, %d failed, %d cancelled job(s)",
                report.completed,
                report.failed,
                report.cancelled,
            )
        return report

    def queue_depth(self) -> dict[JobStatus, int]:
        return self.repository.count_by_status()
