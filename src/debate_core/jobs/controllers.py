"""Controllers for job queue CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from debate_core.config import Settings
from debate_core.jobs.models import JobStatus, JobStatusResponse
from debate_core.jobs.rate_limit import StartRateLimiter
from debate_core.jobs.repository import JobRepository
from debate_core.jobs.routines import JobRoutines
from debate_core.jobs.service import JobQueue, RetentionPolicy
from debate_core.jobs.worker import JobWorker, WorkerPool, WorkerRunSummary
from debate_core.llm.factory import open_generator


@dataclass(slots=True)
class JobSubmitCommand:
    """CLI input for job submission."""

    db_path: Path | None
    job_type: str
    payload_json: str
    job_id: str | None = None
    conversation_id: str | None = None
    user_id: str | None = None
    max_attempts: int | None = None


@dataclass(slots=True)
class JobLookupCommand:
    """CLI input for status/inspect/cancel of one job."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    conversation_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobWorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    pool: bool = False
    concurrency: int | None = None
    max_idle_polls: int = 1


@dataclass(slots=True)
class JobCleanupCommand:
    db_path: Path | None
    older_than_hours: float | None
    use_retention: bool


class JobsCliController:
    """Coordinates queue, worker and inspection CLI operations."""

    def submit(self, command: JobSubmitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        try:
            payload = json.loads(command.payload_json)
        except json.JSONDecodeError as error:
            raise ValueError(f"Payload is not valid JSON: {error}") from error
        if not isinstance(payload, dict):
            raise ValueError("Payload must be a JSON object.")

        with _repository(settings) as repository:
            queue = _queue(settings, repository)
            job_id = queue.submit(
                command.job_type,
                payload,
                job_id=command.job_id,
                conversation_id=command.conversation_id,
                user_id=command.user_id,
                max_attempts=command.max_attempts,
            )
            status = queue.get_status(job_id)
        lines = [f"Job submitted: job_id={job_id} type={command.job_type}"]
        if status is not None:
            lines.append(f"Status: {status.status.value}")
        return lines

    def status(self, command: JobLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            status = _queue(settings, repository).get_status(command.job_id)
        if status is None:
            return [f"Job not found: {command.job_id}"]
        return [json.dumps(status.to_dict(), ensure_ascii=False, indent=2)]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = JobStatus(command.status) if command.status else None
        with _repository(settings) as repository:
            if command.conversation_id is not None and status_filter is None:
                responses = _queue(settings, repository).list_conversation_jobs(
                    command.conversation_id,
                    limit=command.limit,
                )
            else:
                responses = [
                    job.status_response()
                    for job in repository.list_jobs(
                        status=status_filter,
                        conversation_id=command.conversation_id,
                        limit=command.limit,
                    )
                ]
        lines = [f"Jobs: {len(responses)}"]
        lines.extend(_status_line(response) for response in responses)
        return lines

    def inspect(self, command: JobLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_job_details(job_id=command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        lines = [
            f"Job: {job.job_id}",
            f"Type: {job.job_type.value}",
            f"Status: {job.status.value}",
            f"Progress: {job.progress}",
            f"Attempts: {job.attempts}/{job.max_attempts}",
            f"Priority: {job.priority}",
            f"Conversation: {job.conversation_id or '-'}",
            f"Worker: {job.worker_id or '-'}",
            f"Error: {job.error or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def cancel(self, command: JobLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            cancelled = _queue(settings, repository).cancel(command.job_id)
        if cancelled:
            return [f"Job cancelled: {command.job_id}"]
        return [f"Job not cancellable (unknown or already finished): {command.job_id}"]

    def run_worker(self, command: JobWorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository, open_generator(settings) as generator:
            routines = JobRoutines(
                generator,
                call_timeout_seconds=settings.worker.call_timeout_seconds,
            )
            limiter = StartRateLimiter(
                settings.worker.rate_limit_max_starts,
                settings.worker.rate_limit_window_seconds,
            )
            if not command.pool:
                worker = JobWorker(
                    repository=repository,
                    routines=routines,
                    rate_limiter=limiter,
                    poll_interval_seconds=settings.worker.poll_interval_seconds,
                    stale_after_seconds=settings.worker.stale_after_seconds,
                )
                summary = (
                    worker.run_once()
                    if command.once
                    else worker.run_loop(
                        max_jobs=command.max_jobs,
                        max_idle_polls=command.max_idle_polls,
                    )
                )
            else:
                pool = WorkerPool(
                    repository=repository,
                    routines=routines,
                    concurrency=command.concurrency or settings.worker.concurrency,
                    rate_limiter=limiter,
                    poll_interval_seconds=settings.worker.poll_interval_seconds,
                    stale_after_seconds=settings.worker.stale_after_seconds,
                )
                summary = pool.run_forever()
        return [_summary_line(summary)]

    def cleanup(self, command: JobCleanupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            queue = _queue(settings, repository)
            if command.use_retention:
                report = queue.apply_retention()
                return [
                    f"Deleted jobs: completed={report.completed} failed={report.failed} "
                    f"cancelled={report.cancelled}",
                ]
            hours = (
                command.older_than_hours
                if command.older_than_hours is not None
                else settings.queue.cleanup_older_than_hours
            )
            deleted = queue.cleanup_terminal_jobs(older_than=timedelta(hours=hours))
        return [f"Deleted terminal jobs older than {hours:g}h: {deleted}"]


def _queue(settings: Settings, repository: JobRepository) -> JobQueue:
    return JobQueue(
        repository=repository,
        default_max_attempts=settings.queue.default_max_attempts,
        retention=RetentionPolicy(
            completed=timedelta(hours=settings.queue.completed_retention_hours),
            failed=timedelta(hours=settings.queue.failed_retention_hours),
            cancelled=timedelta(hours=settings.queue.failed_retention_hours),
        ),
    )


def _status_line(response: JobStatusResponse) -> str:
    return (
        f"  {response.job_id} status={response.status.value} progress={response.progress} "
        f"created_at={response.created_at.isoformat()}"
    )


def _summary_line(summary: WorkerRunSummary) -> str:
    return (
        "Worker summary: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"failed={summary.failed} discarded={summary.discarded} "
        f"recovered={summary.recovered} idle_polls={summary.idle_polls}"
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.queue.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
