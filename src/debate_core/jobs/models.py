"""Domain models for the job queue: statuses, typed payloads and views."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from debate_core.errors import ValidationError


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobType(str, Enum):
    """Closed set of job kinds."""

    GENERATE_RESPONSE = "generate-response"
    SELECT_EXPERTS = "select-experts"
    EXTRACT_TOPICS = "extract-topics"
    GENERATE_SUMMARY = "generate-summary"


DEFAULT_PRIORITIES: dict[JobType, int] = {
    JobType.GENERATE_RESPONSE: 1,
    JobType.SELECT_EXPERTS: 2,
    JobType.EXTRACT_TOPICS: 3,
    JobType.GENERATE_SUMMARY: 4,
}

STANCES = ("pro", "con")
EXPERT_TYPES = ("historical", "ai")
SOURCE_TYPES = ("pdf", "youtube", "podcast", "link")
MESSAGE_ROLES = ("user", "assistant", "system")


@dataclass(frozen=True, slots=True)
class PriorMessage:
    role: str
    content: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None:
            data["name"] = self.name
        return data


@dataclass(frozen=True, slots=True)
class TranscriptMessage:
    role: str
    content: str
    speaker: str | None = None

    @property
    def label(self) -> str:
        return self.speaker or self.role

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.speaker is not None:
            data["speaker"] = self.speaker
        return data


@dataclass(frozen=True, slots=True)
class GenerateResponsePayload:
    """One participant's next statement in a conversation."""

    participant_id: str
    participant_name: str
    stance: str
    background: str
    expertise: tuple[str, ...]
    topic: str
    messages: tuple[PriorMessage, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GenerateResponsePayload:
        stance = _required_str(data, "stance")
        if stance not in STANCES:
            raise ValidationError(f"stance must be one of {', '.join(STANCES)}, got {stance!r}")
        return cls(
            participant_id=_required_str(data, "participantId"),
            participant_name=_required_str(data, "participantName"),
            stance=stance,
            background=_optional_str(data, "background") or "",
            expertise=_str_tuple(data, "expertise"),
            topic=_required_str(data, "topic"),
            messages=tuple(
                PriorMessage(
                    role=_message_role(item),
                    content=_required_str(item, "content"),
                    name=_optional_str(item, "name"),
                )
                for item in _mapping_list(data, "messages")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "participantId": self.participant_id,
            "participantName": self.participant_name,
            "stance": self.stance,
            "background": self.background,
            "expertise": list(self.expertise),
            "topic": self.topic,
            "messages": [message.to_dict() for message in self.messages],
        }


@dataclass(frozen=True, slots=True)
class SelectExpertsPayload:
    topic: str
    expert_type: str
    count: int = 2

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SelectExpertsPayload:
        expert_type = _required_str(data, "expertType")
        if expert_type not in EXPERT_TYPES:
            raise ValidationError(
                f"expertType must be one of {', '.join(EXPERT_TYPES)}, got {expert_type!r}",
            )
        return cls(
            topic=_required_str(data, "topic"),
            expert_type=expert_type,
            count=_positive_int(data, "count", default=2),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "expertType": self.expert_type, "count": self.count}


@dataclass(frozen=True, slots=True)
class ExtractTopicsPayload:
    content: str
    source_type: str
    max_topics: int = 5

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExtractTopicsPayload:
        source_type = _required_str(data, "sourceType")
        if source_type not in SOURCE_TYPES:
            raise ValidationError(
                f"sourceType must be one of {', '.join(SOURCE_TYPES)}, got {source_type!r}",
            )
        return cls(
            content=_required_str(data, "content"),
            source_type=source_type,
            max_topics=_positive_int(data, "maxTopics", default=5),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "sourceType": self.source_type,
            "maxTopics": self.max_topics,
        }


@dataclass(frozen=True, slots=True)
class GenerateSummaryPayload:
    topic: str
    messages: tuple[TranscriptMessage, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GenerateSummaryPayload:
        messages = tuple(
            TranscriptMessage(
                role=_required_str(item, "role"),
                content=_required_str(item, "content"),
                speaker=_optional_str(item, "speaker"),
            )
            for item in _mapping_list(data, "messages")
        )
        if not messages:
            raise ValidationError("messages must not be empty")
        return cls(topic=_required_str(data, "topic"), messages=messages)

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "messages": [message.to_dict() for message in self.messages]}


JobPayload = (
    GenerateResponsePayload | SelectExpertsPayload | ExtractTopicsPayload | GenerateSummaryPayload
)

_PAYLOAD_TYPES: dict[JobType, type[JobPayload]] = {
    JobType.GENERATE_RESPONSE: GenerateResponsePayload,
    JobType.SELECT_EXPERTS: SelectExpertsPayload,
    JobType.EXTRACT_TOPICS: ExtractTopicsPayload,
    JobType.GENERATE_SUMMARY: GenerateSummaryPayload,
}


def parse_job_type(value: str | JobType) -> JobType:
    try:
        return JobType(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in JobType)
        raise ValidationError(f"Unknown job type {value!r}; expected one of {allowed}") from exc


def parse_payload(job_type: JobType, data: Mapping[str, Any] | JobPayload) -> JobPayload:
    """Validate raw payload data into the typed payload for ``job_type``."""

    expected = _PAYLOAD_TYPES[job_type]
    if isinstance(data, expected):
        return data
    if not isinstance(data, Mapping):
        raise ValidationError(
            f"Payload for {job_type.value} must be a mapping or {expected.__name__}",
        )
    return expected.from_dict(data)


@dataclass(slots=True)
class JobCreate:
    """Input for enqueuing a job."""

    job_type: JobType
    payload: JobPayload
    job_id: str | None = None
    priority: int | None = None
    max_attempts: int = 3
    conversation_id: str | None = None
    user_id: str | None = None


@dataclass(slots=True)
class JobView:
    """Internal job view for the worker, CLI and inspection."""

    job_id: str
    job_type: JobType
    status: JobStatus
    priority: int
    progress: int
    attempts: int
    max_attempts: int
    conversation_id: str | None
    user_id: str | None
    worker_id: str | None
    payload: dict[str, Any]
    result: dict[str, Any] | None
    error: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime

    def typed_payload(self) -> JobPayload:
        return parse_payload(self.job_type, self.payload)

    def status_response(self) -> JobStatusResponse:
        return JobStatusResponse(
            job_id=self.job_id,
            status=self.status,
            progress=self.progress,
            result=self.result if self.status == JobStatus.COMPLETED else None,
            error=self.error if self.status == JobStatus.FAILED else None,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


@dataclass(slots=True)
class JobStatusResponse:
    """The only job shape exposed to callers."""

    job_id: str
    status: JobStatus
    progress: int
    created_at: datetime
    result: dict[str, Any] | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "jobId": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
            "createdAt": self.created_at.isoformat(),
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        if self.started_at is not None:
            data["startedAt"] = self.started_at.isoformat()
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at.isoformat()
        return data


@dataclass(slots=True)
class JobEventView:
    """Job event entry for audit trail."""

    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    """Job view with event stream."""

    job: JobView
    events: list[JobEventView]


def _required_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required and must be a non-empty string")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _str_tuple(data: Mapping[str, Any], key: str) -> tuple[str, ...]:
    value = data.get(key) or []
    if not isinstance(value, list | tuple) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"{key} must be a list of strings")
    return tuple(value)


def _mapping_list(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    value = data.get(key) or []
    if not isinstance(value, list | tuple) or not all(isinstance(item, Mapping) for item in value):
        raise ValidationError(f"{key} must be a list of objects")
    return list(value)


def _message_role(item: Mapping[str, Any]) -> str:
    role = _required_str(item, "role")
    if role not in MESSAGE_ROLES:
        raise ValidationError(f"message role must be one of {', '.join(MESSAGE_ROLES)}")
    return role


def _positive_int(data: Mapping[str, Any], key: str, *, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{key} must be a positive integer")
    return value
