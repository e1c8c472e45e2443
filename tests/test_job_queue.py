from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from debate_core.errors import JobNotFoundError, RetryableError, ValidationError
from debate_core.jobs.models import JobStatus, JobType
from debate_core.jobs.rate_limit import StartRateLimiter
from debate_core.jobs.repository import JobRepository
from debate_core.jobs.routines import JobRoutines
from debate_core.jobs.service import JobQueue, RetentionPolicy
from debate_core.jobs.worker import JobWorker
from debate_core.llm.base import ChatMessage
from debate_core.resilience.failure_classifier import FAILURE_CLASSIFIER_VERSION
from debate_core.resilience.retry import RetryOptions

pytestmark = [
    allure.epic("Job Runtime"),
    allure.feature("Submit, Process, Cancel"),
]

_SUMMARY_PAYLOAD = {
    "topic": "Cities",
    "messages": [
        {"role": "assistant", "content": "Trains move more people.", "speaker": "Alice"},
        {"role": "assistant", "content": "Roads are already paid for.", "speaker": "Bob"},
    ],
}


class _StaticGenerator:
    def __init__(self, text: str) -> None:
        self.text = text
        self.calls: list[tuple[str, list[ChatMessage]]] = []

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        self.calls.append((system_instruction, messages))
        return self.text


class _FlakyGenerator:
    def __init__(self) -> None:
        self.calls = 0

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        self.calls += 1
        raise RetryableError("503 service unavailable")


class _CancellingGenerator:
    """Cancels the job it is working for before returning a result."""

    def __init__(self, queue: JobQueue) -> None:
        self.queue = queue
        self.job_id = ""

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        assert self.queue.cancel(self.job_id) is True
        return json.dumps({"summary": "late", "keyPoints": []})


@pytest.fixture()
def repository(tmp_path: Path):
    repo = JobRepository(tmp_path / "queue.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def queue(repository: JobRepository) -> JobQueue:
    return JobQueue(repository=repository, sleep=lambda _: None)


def _worker(repository: JobRepository, generator: object, sleeps: list[float]) -> JobWorker:
    routines = JobRoutines(
        generator,  # type: ignore[arg-type]
        retry_options=RetryOptions(max_attempts=3, initial_delay=0.01, max_delay=0.05),
        sleep=sleeps.append,
    )
    return JobWorker(repository=repository, routines=routines, stale_after_seconds=0)


def test_submit_returns_pending_status(queue: JobQueue) -> None:
    job_id = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD, conversation_id="conv-1")

    status = queue.get_status(job_id)

    assert status is not None
    assert status.status == JobStatus.PENDING
    assert status.progress == 0
    assert status.to_dict().keys() == {"jobId", "status", "progress", "createdAt"}


def test_summary_job_completes_with_parsed_result(
    queue: JobQueue,
    repository: JobRepository,
) -> None:
    generator = _StaticGenerator(
        '```json\n{"summary": "Both sides argued.", "keyPoints": ["a", "b"]}\n```',
    )
    job_id = queue.submit("generate-summary", _SUMMARY_PAYLOAD)

    summary = _worker(repository, generator, []).run_once()

    status = queue.get_status(job_id)
    assert summary.processed == 1
    assert summary.succeeded == 1
    assert status is not None
    assert status.status == JobStatus.COMPLETED
    assert status.progress == 100
    assert status.result == {"summary": "Both sides argued.", "keyPoints": ["a", "b"]}
    assert status.completed_at is not None
    transcript = generator.calls[0][1][0].content
    assert transcript == "Alice: Trains move more people.\n\nBob: Roads are already paid for."


def test_retryable_failures_exhaust_attempts_then_fail(
    queue: JobQueue,
    repository: JobRepository,
) -> None:
    generator = _FlakyGenerator()
    sleeps: list[float] = []
    job_id = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD, max_attempts=3)

    summary = _worker(repository, generator, sleeps).run_once()

    status = queue.get_status(job_id)
    assert generator.calls == 3
    assert len(sleeps) == 2
    assert summary.failed == 1
    assert status is not None
    assert status.status == JobStatus.FAILED
    assert status.error is not None
    assert "503" in status.error
    assert status.result is None


def test_unparseable_output_fails_without_retry(
    queue: JobQueue,
    repository: JobRepository,
) -> None:
    generator = _StaticGenerator("I cannot answer in JSON today.")
    job_id = queue.submit(JobType.SELECT_EXPERTS, {"topic": "Cities", "expertType": "ai"})

    _worker(repository, generator, []).run_once()

    details = queue.get_job_details(job_id)
    assert len(generator.calls) == 1
    assert details.job.status == JobStatus.FAILED
    assert details.events[-1].details["failure_class"] == "fatal"
    assert details.events[-1].details["classifier_version"] == FAILURE_CLASSIFIER_VERSION
    assert details.events[-1].details["matched_rule"] == "fatal_error"


def test_cancel_during_processing_discards_result(
    queue: JobQueue,
    repository: JobRepository,
) -> None:
    generator = _CancellingGenerator(queue)
    generator.job_id = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD)

    summary = _worker(repository, generator, []).run_once()

    status = queue.get_status(generator.job_id)
    assert summary.discarded == 1
    assert summary.succeeded == 0
    assert status is not None
    assert status.status == JobStatus.CANCELLED
    assert status.result is None


def test_cancelled_pending_job_is_never_claimed(
    queue: JobQueue,
    repository: JobRepository,
) -> None:
    generator = _StaticGenerator("{}")
    job_id = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD)

    assert queue.cancel(job_id) is True
    assert queue.cancel(job_id) is False
    summary = _worker(repository, generator, []).run_once()

    assert summary.idle_polls == 1
    assert generator.calls == []


def test_invalid_payload_is_rejected_before_enqueue(queue: JobQueue) -> None:
    with pytest.raises(ValidationError, match="messages must not be empty"):
        queue.submit(JobType.GENERATE_SUMMARY, {"topic": "Cities", "messages": []})
    with pytest.raises(ValidationError, match="stance"):
        queue.submit(
            JobType.GENERATE_RESPONSE,
            {
                "participantId": "p1",
                "participantName": "Ada",
                "stance": "neutral",
                "topic": "Cities",
            },
        )
    with pytest.raises(ValidationError, match="Unknown job type"):
        queue.submit("write-poem", {})

    assert sum(queue.queue_depth().values()) == 0


def test_resubmitting_job_id_keeps_single_job(queue: JobQueue) -> None:
    first = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD, job_id="job-fixed")
    second = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD, job_id="job-fixed")

    assert first == second == "job-fixed"
    assert queue.queue_depth()[JobStatus.PENDING] == 1


def test_get_job_details_raises_for_unknown_job(queue: JobQueue) -> None:
    assert queue.get_status("missing") is None
    with pytest.raises(JobNotFoundError):
        queue.get_job_details("missing")


def test_list_conversation_jobs(queue: JobQueue) -> None:
    queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD, conversation_id="conv-1")
    queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD, conversation_id="conv-2")

    assert len(queue.list_conversation_jobs("conv-1")) == 1
    assert queue.list_conversation_jobs("conv-3") == []


def test_retention_applies_per_status_windows(tmp_path: Path) -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    clock_value = [now]
    repository = JobRepository(tmp_path / "retention.db", clock=lambda: clock_value[0])
    repository.init_schema()
    try:
        queue = JobQueue(
            repository=repository,
            retention=RetentionPolicy(completed=timedelta(hours=1), failed=timedelta(hours=24)),
            clock=lambda: clock_value[0],
        )
        done = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD)
        repository.claim_next_pending(worker_id="w1")
        repository.complete_job(job_id=done, result={})
        failed = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD)
        repository.claim_next_pending(worker_id="w1")
        repository.fail_job(job_id=failed, error="boom")

        clock_value[0] = now + timedelta(hours=2)
        report = queue.apply_retention()

        assert (report.completed, report.failed, report.cancelled) == (1, 0, 0)
        assert queue.get_status(done) is None
        assert queue.get_status(failed) is not None
        assert queue.cleanup_terminal_jobs(older_than=timedelta(hours=1)) == 1
    finally:
        repository.close()


def test_rate_limiter_gates_job_starts(
    queue: JobQueue,
    repository: JobRepository,
) -> None:
    ticks = [0.0]
    limiter = StartRateLimiter(1, 60.0, clock=lambda: ticks[0])
    generator = _StaticGenerator('{"summary": "s", "keyPoints": []}')
    routines = JobRoutines(generator, sleep=lambda _: None)
    first_id = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD)
    second_id = queue.submit(JobType.GENERATE_SUMMARY, _SUMMARY_PAYLOAD)
    worker = JobWorker(
        repository=repository,
        routines=routines,
        rate_limiter=limiter,
        stale_after_seconds=0,
    )

    assert worker.run_once().succeeded == 1
    assert limiter.try_reserve() is None
    assert limiter.seconds_until_available() == pytest.approx(60.0)

    ticks[0] = 61.0
    assert worker.run_once().succeeded == 1
    statuses = [queue.get_status(first_id), queue.get_status(second_id)]
    assert all(status is not None and status.status == JobStatus.COMPLETED for status in statuses)
