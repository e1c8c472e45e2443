from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import allure
import pytest

from debate_core.jobs.models import JobStatus, JobType
from debate_core.jobs.repository import JobRepository
from debate_core.jobs.routines import JobRoutines
from debate_core.jobs.service import JobQueue
from debate_core.jobs.worker import JobWorker, WorkerPool
from debate_core.llm.base import ChatMessage

pytestmark = [
    allure.epic("Job Runtime"),
    allure.feature("Worker Pool"),
]

_TOPICS_PAYLOAD = {"content": "Trains and buses.", "sourceType": "link", "maxTopics": 2}


class _SlowGenerator:
    """Tracks how many calls overlap."""

    def __init__(self, delay: float = 0.05) -> None:
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.total = 0
        self._lock = threading.Lock()

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        with self._lock:
            self.active += 1
            self.total += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return json.dumps({"topics": [{"title": "transit"}]})


@pytest.fixture()
def repository(tmp_path: Path):
    repo = JobRepository(tmp_path / "pool.db", sqlite_busy_timeout_ms=10_000)
    repo.init_schema()
    yield repo
    repo.close()


def _wait_until(predicate, timeout: float = 20.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_pool_processes_all_jobs_within_concurrency(repository: JobRepository) -> None:
    queue = JobQueue(repository=repository)
    job_ids = [queue.submit(JobType.EXTRACT_TOPICS, _TOPICS_PAYLOAD) for _ in range(8)]
    generator = _SlowGenerator()
    pool = WorkerPool(
        repository=repository,
        routines=JobRoutines(generator, sleep=lambda _: None),
        concurrency=3,
        poll_interval_seconds=0.01,
        stale_after_seconds=0,
    )

    pool.start()
    try:
        done = _wait_until(
            lambda: queue.queue_depth()[JobStatus.COMPLETED] == len(job_ids),
        )
    finally:
        summary = pool.stop(timeout=10)

    assert done
    assert summary.succeeded == len(job_ids)
    assert generator.total == len(job_ids)
    assert 1 <= generator.peak <= 3
    assert not pool.running


def test_pool_rejects_zero_concurrency(repository: JobRepository) -> None:
    with pytest.raises(ValueError, match="concurrency"):
        WorkerPool(
            repository=repository,
            routines=JobRoutines(_SlowGenerator()),
            concurrency=0,
        )


def test_run_loop_stops_when_idle_or_capped(repository: JobRepository) -> None:
    queue = JobQueue(repository=repository)
    for _ in range(3):
        queue.submit(JobType.EXTRACT_TOPICS, _TOPICS_PAYLOAD)
    worker = JobWorker(
        repository=repository,
        routines=JobRoutines(_SlowGenerator(delay=0), sleep=lambda _: None),
        poll_interval_seconds=0.01,
        stale_after_seconds=0,
    )

    capped = worker.run_loop(max_jobs=2)
    drained = worker.run_loop(max_idle_polls=1)

    assert capped.processed == 2
    assert drained.processed == 1
    assert drained.idle_polls == 1
    assert queue.queue_depth()[JobStatus.COMPLETED] == 3


def test_worker_recovers_stale_jobs_before_claiming(repository: JobRepository) -> None:
    queue = JobQueue(repository=repository)
    stuck = queue.submit(JobType.EXTRACT_TOPICS, _TOPICS_PAYLOAD)
    repository.claim_next_pending(worker_id="crashed-worker")
    worker = JobWorker(
        repository=repository,
        routines=JobRoutines(_SlowGenerator(delay=0)),
        stale_after_seconds=0.001,
    )
    time.sleep(0.01)

    summary = worker.run_once()

    status = queue.get_status(stuck)
    assert summary.recovered == 1
    assert summary.idle_polls == 1
    assert status is not None
    assert status.status == JobStatus.FAILED
