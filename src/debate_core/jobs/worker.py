"""Queue workers that claim pending jobs and run their routines."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

from debate_core.errors import ValidationError
from debate_core.jobs.models import JobView
from debate_core.jobs.rate_limit import StartRateLimiter
from debate_core.jobs.repository import JobRepository
from debate_core.jobs.routines import JobRoutines
from debate_core.resilience.failure_classifier import FailureClassification, classify_failure

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    discarded: int = 0
    recovered: int = 0
    idle_polls: int = 0

    def merge(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.discarded += other.discarded
        self.recovered += other.recovered
        self.idle_polls += other.idle_polls


class JobWorker:
    """Consumes pending jobs one at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRepository,
        routines: JobRoutines,
        worker_id: str | None = None,
        rate_limiter: StartRateLimiter | None = None,
        poll_interval_seconds: float = 1.0,
        stale_after_seconds: float = 600.0,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.repository = repository
        self.routines = routines
        self.worker_id = worker_id or f"worker-{uuid4().hex[:8]}"
        self.rate_limiter = rate_limiter
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self.stop_event = stop_event or threading.Event()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if self.stop_event.is_set():
            summary.idle_polls = 1
            return summary

        summary.recovered = self._recover_stale_jobs()

        token = self.rate_limiter.reserve(self.stop_event) if self.rate_limiter else None
        if self.rate_limiter is not None and token is None:
            summary.idle_polls = 1
            return summary

        job = self.repository.claim_next_pending(worker_id=self.worker_id)
        if job is None:
            if self.rate_limiter is not None and token is not None:
                self.rate_limiter.cancel(token)
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        self._process(job, summary)
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Run until the queue is idle, ``max_jobs`` is reached or a stop is requested.

        Args:
            max_jobs: Stop after processing this many jobs (None = unlimited).
            max_idle_polls: Consecutive empty polls before exiting; 0 polls forever.
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with stop_on_signals(self.stop_event):
            while not self.stop_event.is_set():
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    break
                summary = self.run_once()
                aggregate.merge(summary)
                if summary.processed:
                    consecutive_idle = 0
                    continue
                consecutive_idle += 1
                if max_idle_polls and consecutive_idle >= max_idle_polls:
                    break
                self.stop_event.wait(self.poll_interval_seconds)
        return aggregate

    def _process(self, job: JobView, summary: WorkerRunSummary) -> None:
        logger.info(
            "Processing job %s (%s), attempt %d",
            job.job_id,
            job.job_type.value,
            job.attempts,
        )
        try:
            payload = job.typed_payload()
            result = self.routines.run(
                payload,
                max_attempts=job.max_attempts,
                report_progress=lambda progress: self._report_progress(job.job_id, progress),
            )
        except ValidationError as error:
            self._fail(job, f"Invalid payload: {error}", classify_failure(error), summary)
            return
        except Exception as error:  # noqa: BLE001
            self._fail(job, str(error) or type(error).__name__, classify_failure(error), summary)
            return

        if self.repository.complete_job(job_id=job.job_id, result=result):
            summary.succeeded = 1
            logger.info("Completed job %s", job.job_id)
        else:
            summary.discarded = 1
            logger.info("Discarded result of job %s: no longer processing", job.job_id)

    def _fail(
        self,
        job: JobView,
        message: str,
        classification: FailureClassification,
        summary: WorkerRunSummary,
    ) -> None:
        failure_class = classification.failure_class.value
        if self.repository.fail_job(
            job_id=job.job_id,
            error=message,
            failure_class=failure_class,
            diagnostics=classification.to_event_details(),
        ):
            summary.failed = 1
            logger.warning("Job %s failed (%s): %s", job.job_id, failure_class, message)
        else:
            summary.discarded = 1
            logger.info("Discarded failure of job %s: no longer processing", job.job_id)

    def _report_progress(self, job_id: str, progress: int) -> None:
        if not self.repository.update_progress(job_id=job_id, progress=progress):
            logger.debug("Progress %d for job %s not recorded", progress, job_id)

    def _recover_stale_jobs(self) -> int:
        if self.stale_after_seconds <= 0:
            return 0
        recovered = self.repository.recover_stale_jobs(
            stale_after=timedelta(seconds=self.stale_after_seconds),
        )
        for job_id in recovered:
            logger.warning("Job %s marked failed: worker lost", job_id)
        return len(recovered)


class WorkerPool:
    """Fixed-size pool of worker threads sharing one queue and rate limiter."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRepository,
        routines: JobRoutines,
        concurrency: int = 3,
        rate_limiter: StartRateLimiter | None = None,
        poll_interval_seconds: float = 1.0,
        stale_after_seconds: float = 600.0,
        error_backoff_seconds: float = 5.0,
        name: str = "debate-worker",
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.stop_event = threading.Event()
        self.error_backoff_seconds = error_backoff_seconds
        self.name = name
        self.workers = [
            JobWorker(
                repository=repository,
                routines=routines,
                worker_id=f"{name}-{index}-{uuid4().hex[:6]}",
                rate_limiter=rate_limiter,
                poll_interval_seconds=poll_interval_seconds,
                stale_after_seconds=stale_after_seconds,
                stop_event=self.stop_event,
            )
            for index in range(concurrency)
        ]
        self._threads: list[threading.Thread] = []
        self._aggregate = WorkerRunSummary()
        self._summary_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self.stop_event.clear()
        self._aggregate = WorkerRunSummary()
        self._threads = [
            threading.Thread(
                target=self._thread_loop,
                args=(worker,),
                daemon=True,
                name=worker.worker_id,
            )
            for worker in self.workers
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Worker pool %s started with %d thread(s)", self.name, len(self._threads))

    def stop(self, timeout: float | None = 30.0) -> WorkerRunSummary:
        """Request a stop and wait for in-flight jobs to finish."""

        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = [thread for thread in self._threads if thread.is_alive()]
        if self._threads:
            logger.warning("%d worker thread(s) still busy after stop", len(self._threads))
        else:
            logger.info("Worker pool %s stopped", self.name)
        return self.summary()

    def run_forever(self) -> WorkerRunSummary:
        """Block until SIGINT/SIGTERM or ``stop`` from another thread."""

        with stop_on_signals(self.stop_event):
            self.start()
            while not self.stop_event.wait(0.5):
                pass
        return self.stop()

    def summary(self) -> WorkerRunSummary:
        snapshot = WorkerRunSummary()
        with self._summary_lock:
            snapshot.merge(self._aggregate)
        return snapshot

    def _thread_loop(self, worker: JobWorker) -> None:
        while not self.stop_event.is_set():
            try:
                summary = worker.run_once()
            except Exception:
                logger.exception("Worker %s error", worker.worker_id)
                self.stop_event.wait(self.error_backoff_seconds)
                continue
            with self._summary_lock:
                self._aggregate.merge(summary)
            if summary.processed == 0:
                self.stop_event.wait(worker.poll_interval_seconds)


@contextmanager
def stop_on_signals(stop_event: threading.Event) -> Iterator[None]:
    """Set ``stop_event`` on SIGINT/SIGTERM while the block runs."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s, stopping after in-flight jobs", name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
