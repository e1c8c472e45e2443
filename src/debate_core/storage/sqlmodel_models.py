"""SQLModel ORM tables for job queue, conversation context and cache storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_jobs_queue", "status", "priority", "created_at"),
        Index("idx_jobs_conversation_time", "conversation_id", "created_at"),
    )

    job_id: str = Field(primary_key=True)
    job_type: str = Field(index=True)
    status: str = Field(index=True)
    priority: int = Field(default=100)
    progress: int = Field(default=0)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    conversation_id: str | None = Field(default=None)
    user_id: str | None = Field(default=None, index=True)
    worker_id: str | None = Field(default=None)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobEvent(SQLModel, table=True):
    __tablename__ = "job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ConversationContextRecord(SQLModel, table=True):
    __tablename__ = "conversation_contexts"  # type: ignore[bad-override]

    conversation_id: str = Field(primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    context_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CacheEntryRecord(SQLModel, table=True):
    __tablename__ = "cache_entries"  # type: ignore[bad-override]

    cache_key: str = Field(primary_key=True)
    value_json: str = Field(sa_column=Column(Text, nullable=False))
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
