"""Persistent queue repository for jobs."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, delete, select

from debate_core.jobs.models import (
    DEFAULT_PRIORITIES,
    TERMINAL_STATUSES,
    JobCreate,
    JobDetails,
    JobEventView,
    JobStatus,
    JobType,
    JobView,
)
from debate_core.storage.alembic_runner import upgrade_head
from debate_core.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json_dict,
    optional_aware,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from debate_core.storage.sqlmodel_models import Job, JobEvent

WORKER_LOST_ERROR = "worker lost: job exceeded the processing deadline without finishing"


class JobRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    Every status transition is a compare-and-set ``UPDATE ... WHERE status = X``
    guarded by ``rowcount``; a lost race returns False instead of raising.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self._clock = clock
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def enqueue(self, payload: JobCreate) -> tuple[JobView, bool]:
        """Create a pending job; returns ``(view, created)``.

        An existing ``job_id`` is left untouched and returned with
        ``created=False``.
        """

        now = to_db_datetime(self._clock())
        job_id = payload.job_id or str(uuid4())
        priority = (
            payload.priority
            if payload.priority is not None
            else DEFAULT_PRIORITIES[payload.job_type]
        )
        with Session(self.engine) as session:
            result = session.exec(  # type: ignore[call-overload]
                sqlite_insert(Job)
                .values(
                    job_id=job_id,
                    job_type=payload.job_type.value,
                    status=JobStatus.PENDING.value,
                    priority=priority,
                    progress=0,
                    attempts=0,
                    max_attempts=payload.max_attempts,
                    conversation_id=payload.conversation_id,
                    user_id=payload.user_id,
                    payload_json=dump_json(payload.payload.to_dict()),
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["job_id"]),
            )
            created = result.rowcount == 1
            if created:
                self._add_event(
                    session=session,
                    job_id=job_id,
                    event_type="enqueued",
                    status_from=None,
                    status_to=JobStatus.PENDING,
                    details={
                        "job_type": payload.job_type.value,
                        "priority": priority,
                        "max_attempts": payload.max_attempts,
                    },
                )
            session.commit()
            row = session.get(Job, job_id)
            if row is None:
                raise RuntimeError(f"Job vanished right after enqueue: {job_id}")
            return _to_job_view(row), created

    def claim_next_pending(self, *, worker_id: str) -> JobView | None:
        """Atomically claim the highest-priority pending job."""

        while True:
            now = to_db_datetime(self._clock())
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(Job)
                    .where(Job.status == JobStatus.PENDING.value)
                    .order_by(
                        col(Job.priority).asc(),
                        col(Job.created_at).asc(),
                        col(Job.job_id).asc(),
                    )
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == candidate.job_id,
                        col(Job.status) == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        attempts=candidate.attempts + 1,
                        started_at=now,
                        worker_id=worker_id,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(select(Job).where(Job.job_id == candidate.job_id)).one()
                self._add_event(
                    session=session,
                    job_id=claimed.job_id,
                    event_type="claimed",
                    status_from=JobStatus.PENDING,
                    status_to=JobStatus.PROCESSING,
                    details={"worker_id": worker_id, "attempt": claimed.attempts},
                )
                session.commit()
                return _to_job_view(claimed)

    def update_progress(self, *, job_id: str, progress: int) -> bool:
        """Raise progress of a processing job; lower values are ignored."""

        value = max(0, min(100, progress))
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.PROCESSING.value,
                    col(Job.progress) <= value,
                )
                .values(progress=value, updated_at=to_db_datetime(self._clock())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_job(self, *, job_id: str, result: dict[str, Any]) -> bool:
        """Mark a processing job as completed with its result."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    progress=100,
                    result_json=dump_json(result),
                    error=None,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if outcome.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="completed",
                status_from=JobStatus.PROCESSING,
                status_to=JobStatus.COMPLETED,
                details={},
            )
            session.commit()
            return True

    def fail_job(
        self,
        *,
        job_id: str,
        error: str,
        failure_class: str | None = None,
        diagnostics: dict[str, object] | None = None,
    ) -> bool:
        """Mark a processing job as failed; ``diagnostics`` go into the event details."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    error=error,
                    result_json=None,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if outcome.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="failed",
                status_from=JobStatus.PROCESSING,
                status_to=JobStatus.FAILED,
                details={"error": error, "failure_class": failure_class, **(diagnostics or {})},
            )
            session.commit()
            return True

    def cancel_job(self, *, job_id: str) -> bool:
        """Cancel a pending or processing job; False when unknown or terminal."""

        while True:
            now = to_db_datetime(self._clock())
            with Session(self.engine) as session:
                row = session.get(Job, job_id)
                if row is None:
                    return False
                previous = JobStatus(row.status)
                if previous.terminal:
                    return False

                result = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == job_id,
                        col(Job.status) == previous.value,
                    )
                    .values(
                        status=JobStatus.CANCELLED.value,
                        completed_at=now,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                self._add_event(
                    session=session,
                    job_id=job_id,
                    event_type="cancelled",
                    status_from=previous,
                    status_to=JobStatus.CANCELLED,
                    details={"advisory": previous == JobStatus.PROCESSING},
                )
                session.commit()
                return True

    def get_job(self, *, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            return _to_job_view(row) if row is not None else None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        conversation_id: str | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, newest first, optionally filtered."""

        with Session(self.engine) as session:
            statement = select(Job).order_by(col(Job.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(Job.status == status.value)
            if conversation_id is not None:
                statement = statement.where(Job.conversation_id == conversation_id)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def get_job_details(self, *, job_id: str) -> JobDetails | None:
        """Return job view with its event stream."""

        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                return None
            event_rows = session.exec(
                select(JobEvent)
                .where(JobEvent.job_id == job_id)
                .order_by(col(JobEvent.created_at).asc(), col(JobEvent.id).asc()),
            ).all()
            view = _to_job_view(job)

        events = [
            JobEventView(
                event_id=row.id or 0,
                job_id=row.job_id,
                event_type=row.event_type,
                status_from=JobStatus(row.status_from) if row.status_from is not None else None,
                status_to=JobStatus(row.status_to) if row.status_to is not None else None,
                created_at=to_utc_aware_datetime(row.created_at),
                details=load_json_dict(row.details_json),
            )
            for row in event_rows
        ]
        return JobDetails(job=view, events=events)

    def delete_terminal_jobs(
        self,
        *,
        completed_before: datetime,
        statuses: Iterable[JobStatus] = TERMINAL_STATUSES,
    ) -> int:
        """Delete terminal jobs finished before the cutoff; events cascade."""

        values = [status.value for status in statuses if status.terminal]
        if not values:
            return 0
        with Session(self.engine) as session:
            result = session.exec(
                delete(Job).where(
                    col(Job.status).in_(values),
                    col(Job.completed_at) < to_db_datetime(completed_before),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def recover_stale_jobs(self, *, stale_after: timedelta) -> list[str]:
        """Fail processing jobs whose worker never reported back."""

        started_before = self._clock() - stale_after
        with Session(self.engine) as session:
            stale_ids = list(
                session.exec(
                    select(Job.job_id).where(
                        Job.status == JobStatus.PROCESSING.value,
                        col(Job.started_at) < to_db_datetime(started_before),
                    ),
                ).all(),
            )
        return [
            job_id
            for job_id in stale_ids
            if self.fail_job(job_id=job_id, error=WORKER_LOST_ERROR, failure_class="worker_lost")
        ]

    def count_by_status(self) -> dict[JobStatus, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Job.status, func.count()).group_by(Job.status),
            ).all()
        counts = dict.fromkeys(JobStatus, 0)
        for status, count in rows:
            counts[JobStatus(status)] = int(count)
        return counts

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            JobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=dump_json(details) if details else None,
                created_at=to_db_datetime(self._clock()),
            ),
        )


def _to_job_view(row: Job) -> JobView:
    return JobView(
        job_id=row.job_id,
        job_type=JobType(row.job_type),
        status=JobStatus(row.status),
        priority=row.priority,
        progress=row.progress,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        conversation_id=row.conversation_id,
        user_id=row.user_id,
        worker_id=row.worker_id,
        payload=json.loads(row.payload_json),
        result=json.loads(row.result_json) if row.result_json else None,
        error=row.error,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_aware(row.started_at),
        completed_at=optional_aware(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
