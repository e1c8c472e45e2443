"""Immutable conversation context values.

Every update produces a new value via ``dataclasses.replace``; nothing is
mutated in place, so a context can be shared across worker threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from debate_core.storage.common import from_iso

USER_SPEAKER_ID = "user"
UNCONSTRAINED_SPEAKER = ""

MAX_KEY_POINTS = 5
MAX_RECENT_STATEMENTS = 2
MAX_MAIN_POINTS = 10
MAX_PENDING_QUESTIONS = 3


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class TurnRecord:
    """Append-only entry: who spoke, when, and which message."""

    speaker_id: str
    timestamp: datetime
    message_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "speakerId": self.speaker_id,
            "timestamp": self.timestamp.isoformat(),
            "messageId": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TurnRecord:
        return cls(
            speaker_id=str(data["speakerId"]),
            timestamp=from_iso(str(data["timestamp"])),
            message_id=str(data["messageId"]),
        )


@dataclass(frozen=True, slots=True)
class ConversationMessage:
    """A produced message fed to the context engine."""

    message_id: str
    conversation_id: str
    role: MessageRole
    content: str
    speaker_id: str
    timestamp: datetime
    speaker_name: str | None = None

    @property
    def is_user(self) -> bool:
        return self.role == MessageRole.USER

    @property
    def is_participant(self) -> bool:
        return self.role == MessageRole.ASSISTANT and self.speaker_id != USER_SPEAKER_ID


@dataclass(frozen=True, slots=True)
class ParticipantContext:
    """Rolling per-speaker summary of recent key points and statements."""

    participant_id: str
    key_points: tuple[str, ...] = ()
    recent_statements: tuple[str, ...] = ()

    def with_statement(self, statement: str, key_points: list[str]) -> ParticipantContext:
        return ParticipantContext(
            participant_id=self.participant_id,
            key_points=keep_last((*self.key_points, *key_points), MAX_KEY_POINTS),
            recent_statements=keep_last(
                (*self.recent_statements, statement),
                MAX_RECENT_STATEMENTS,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "participantId": self.participant_id,
            "keyPoints": list(self.key_points),
            "recentStatements": list(self.recent_statements),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParticipantContext:
        return cls(
            participant_id=str(data.get("participantId", "")),
            key_points=tuple(str(item) for item in data.get("keyPoints", [])),
            recent_statements=tuple(str(item) for item in data.get("recentStatements", [])),
        )


@dataclass(frozen=True, slots=True)
class ConversationContext:
    """Per-conversation aggregate state."""

    conversation_id: str
    topic: str = ""
    user_id: str | None = None
    participants: tuple[str, ...] = ()
    turn_history: tuple[TurnRecord, ...] = ()
    # Keyed by participant name (the id when no name is known).
    participant_contexts: dict[str, ParticipantContext] = field(default_factory=dict)
    main_points: tuple[str, ...] = ()
    pending_questions: tuple[str, ...] = ()
    next_speaker: str = UNCONSTRAINED_SPEAKER

    def has_message(self, message_id: str) -> bool:
        return any(turn.message_id == message_id for turn in self.turn_history)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "topic": self.topic,
            "userId": self.user_id,
            "participants": list(self.participants),
            "turnHistory": [turn.to_dict() for turn in self.turn_history],
            "participantContexts": {
                name: context.to_dict() for name, context in self.participant_contexts.items()
            },
            "mainPoints": list(self.main_points),
            "pendingQuestions": list(self.pending_questions),
            "nextSpeaker": self.next_speaker,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationContext:
        user_id = data.get("userId")
        return cls(
            conversation_id=str(data["conversationId"]),
            topic=str(data.get("topic", "")),
            user_id=str(user_id) if user_id is not None else None,
            participants=tuple(str(item) for item in data.get("participants", [])),
            turn_history=tuple(TurnRecord.from_dict(item) for item in data.get("turnHistory", [])),
            participant_contexts={
                str(name): ParticipantContext.from_dict(value)
                for name, value in (data.get("participantContexts") or {}).items()
            },
            main_points=tuple(str(item) for item in data.get("mainPoints", [])),
            pending_questions=tuple(str(item) for item in data.get("pendingQuestions", [])),
            next_speaker=str(data.get("nextSpeaker", UNCONSTRAINED_SPEAKER)),
        )


def keep_last(items: tuple[str, ...], limit: int) -> tuple[str, ...]:
    """Trim to the ``limit`` most recent items, preserving order."""

    if limit <= 0:
        return ()
    return items[-limit:]
