"""Durable job queue, routines and worker pool."""

from debate_core.jobs.models import (
    DEFAULT_PRIORITIES,
    ExtractTopicsPayload,
    GenerateResponsePayload,
    GenerateSummaryPayload,
    JobCreate,
    JobDetails,
    JobEventView,
    JobPayload,
    JobStatus,
    JobStatusResponse,
    JobType,
    JobView,
    PriorMessage,
    SelectExpertsPayload,
    TranscriptMessage,
    parse_payload,
)
from debate_core.jobs.rate_limit import StartRateLimiter
from debate_core.jobs.repository import JobRepository
from debate_core.jobs.routines import JobRoutines
from debate_core.jobs.service import CleanupReport, JobQueue, RetentionPolicy
from debate_core.jobs.worker import JobWorker, WorkerPool, WorkerRunSummary

__all__ = [
    "DEFAULT_PRIORITIES",
    "CleanupReport",
    "ExtractTopicsPayload",
    "GenerateResponsePayload",
    "GenerateSummaryPayload",
    "JobCreate",
    "JobDetails",
    "JobEventView",
    "JobPayload",
    "JobQueue",
    "JobRepository",
    "JobRoutines",
    "JobStatus",
    "JobStatusResponse",
    "JobType",
    "JobView",
    "JobWorker",
    "PriorMessage",
    "RetentionPolicy",
    "SelectExpertsPayload",
    "StartRateLimiter",
    "TranscriptMessage",
    "WorkerPool",
    "WorkerRunSummary",
    "parse_payload",
]
