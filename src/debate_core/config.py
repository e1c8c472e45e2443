"""Runtime configuration for the job queue, workers, cache and text generation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_LLM_BACKENDS = ("openai", "echo")


@dataclass(slots=True)
class QueueSettings:
    """Submission defaults and terminal-job retention."""

    default_max_attempts: int = 3
    completed_retention_hours: float = 1.0
    failed_retention_hours: float = 24.0
    cleanup_older_than_hours: float = 24.0
    sqlite_busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class WorkerSettings:
    """Worker pool sizing and dispatch limits."""

    concurrency: int = 3
    rate_limit_max_starts: int = 10
    rate_limit_window_seconds: float = 60.0
    poll_interval_seconds: float = 1.0
    stale_after_seconds: float = 600.0
    call_timeout_seconds: float = 120.0


@dataclass(slots=True)
class CacheSettings:
    """Layered cache settings."""

    ttl_hours: float = 24.0
    max_fetch_workers: int = 8


@dataclass(slots=True)
class LlmSettings:
    """Text-generation endpoint settings."""

    backend: str = "openai"
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 500
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".debate_core.db")
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from ``DEBATE_CORE_*`` environment variables."""

        return cls(
            db_path=db_path or Path(os.getenv("DEBATE_CORE_DB_PATH", ".debate_core.db")),
            queue=QueueSettings(
                default_max_attempts=_env_int("DEBATE_CORE_MAX_ATTEMPTS", 3),
                completed_retention_hours=_env_float(
                    "DEBATE_CORE_COMPLETED_RETENTION_HOURS",
                    1.0,
                ),
                failed_retention_hours=_env_float("DEBATE_CORE_FAILED_RETENTION_HOURS", 24.0),
                cleanup_older_than_hours=_env_float(
                    "DEBATE_CORE_CLEANUP_OLDER_THAN_HOURS",
                    24.0,
                ),
                sqlite_busy_timeout_ms=_env_int("DEBATE_CORE_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            ),
            worker=WorkerSettings(
                concurrency=_env_int("DEBATE_CORE_WORKER_CONCURRENCY", 3),
                rate_limit_max_starts=_env_int("DEBATE_CORE_RATE_LIMIT_MAX_STARTS", 10),
                rate_limit_window_seconds=_env_float(
                    "DEBATE_CORE_RATE_LIMIT_WINDOW_SECONDS",
                    60.0,
                ),
                poll_interval_seconds=_env_float("DEBATE_CORE_POLL_INTERVAL_SECONDS", 1.0),
                stale_after_seconds=_env_float("DEBATE_CORE_STALE_AFTER_SECONDS", 600.0),
                call_timeout_seconds=_env_float("DEBATE_CORE_CALL_TIMEOUT_SECONDS", 120.0),
            ),
            cache=CacheSettings(
                ttl_hours=_env_float("DEBATE_CORE_CACHE_TTL_HOURS", 24.0),
                max_fetch_workers=_env_int("DEBATE_CORE_CACHE_FETCH_WORKERS", 8),
            ),
            llm=LlmSettings(
                backend=os.getenv("DEBATE_CORE_LLM_BACKEND", "openai").strip().lower(),
                api_key=os.getenv("DEBATE_CORE_LLM_API_KEY", os.getenv("OPENAI_API_KEY", "")),
                base_url=os.getenv("DEBATE_CORE_LLM_BASE_URL", "https://api.openai.com/v1"),
                model=os.getenv("DEBATE_CORE_LLM_MODEL", os.getenv("OPENAI_MODEL", "gpt-4o-mini")),
                temperature=_env_float("DEBATE_CORE_LLM_TEMPERATURE", 0.7),
                max_tokens=_env_int("DEBATE_CORE_LLM_MAX_TOKENS", 500),
                timeout_seconds=_env_float("DEBATE_CORE_LLM_TIMEOUT_SECONDS", 60.0),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        if self.queue.default_max_attempts < 1:
            raise ValueError("DEBATE_CORE_MAX_ATTEMPTS must be >= 1.")
        if self.queue.completed_retention_hours < 0:
            raise ValueError("DEBATE_CORE_COMPLETED_RETENTION_HOURS must be >= 0.")
        if self.queue.failed_retention_hours < 0:
            raise ValueError("DEBATE_CORE_FAILED_RETENTION_HOURS must be >= 0.")
        if self.queue.cleanup_older_than_hours < 0:
            raise ValueError("DEBATE_CORE_CLEANUP_OLDER_THAN_HOURS must be >= 0.")
        if self.worker.concurrency < 1:
            raise ValueError("DEBATE_CORE_WORKER_CONCURRENCY must be >= 1.")
        if self.worker.rate_limit_max_starts < 1:
            raise ValueError("DEBATE_CORE_RATE_LIMIT_MAX_STARTS must be >= 1.")
        if self.worker.rate_limit_window_seconds <= 0:
            raise ValueError("DEBATE_CORE_RATE_LIMIT_WINDOW_SECONDS must be > 0.")
        if self.worker.call_timeout_seconds <= 0:
            raise ValueError("DEBATE_CORE_CALL_TIMEOUT_SECONDS must be > 0.")
        if self.cache.ttl_hours <= 0:
            raise ValueError("DEBATE_CORE_CACHE_TTL_HOURS must be > 0.")
        if self.llm.backend not in SUPPORTED_LLM_BACKENDS:
            raise ValueError(
                f"DEBATE_CORE_LLM_BACKEND must be one of {', '.join(SUPPORTED_LLM_BACKENDS)}, "
                f"got {self.llm.backend!r}.",
            )
        if self.llm.backend == "openai":
            if not self.llm.api_key:
                raise ValueError(
                    "DEBATE_CORE_LLM_API_KEY is required for the openai backend. "
                    "Set it or use DEBATE_CORE_LLM_BACKEND=echo.",
                )
            parsed = urlparse(self.llm.base_url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    f"Invalid DEBATE_CORE_LLM_BASE_URL: {self.llm.base_url!r}. "
                    "Expected an absolute http:// or https:// URL.",
                )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {raw!r}") from error
