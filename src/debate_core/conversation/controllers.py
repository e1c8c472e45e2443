"""Controllers for conversation context CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from debate_core.cache.backend import SqlCacheBackend
from debate_core.cache.layered import LayeredCache
from debate_core.config import Settings
from debate_core.conversation.engine import ContextEngine
from debate_core.conversation.extraction import PointExtractor
from debate_core.conversation.models import ConversationMessage, MessageRole
from debate_core.conversation.repository import ContextRepository
from debate_core.llm.factory import open_generator
from debate_core.storage.common import utc_now


@dataclass(slots=True)
class ContextInitCommand:
    db_path: Path | None
    conversation_id: str
    topic: str
    participants: tuple[str, ...]
    user_id: str | None


@dataclass(slots=True)
class ContextRecordCommand:
    """CLI input for recording one produced message."""

    db_path: Path | None
    conversation_id: str
    role: str
    content: str
    speaker_id: str
    message_id: str | None
    speaker_name: str | None = None


@dataclass(slots=True)
class ContextRegisterCommand:
    db_path: Path | None
    conversation_id: str
    participant_id: str
    name: str | None


@dataclass(slots=True)
class ContextLookupCommand:
    db_path: Path | None
    conversation_id: str


@dataclass(slots=True)
class ContextCleanupCommand:
    db_path: Path | None


class ContextCliController:
    """Coordinates context engine CLI operations."""

    def init(self, command: ContextInitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _engine(settings) as engine:
            context = engine.initialize(
                command.conversation_id,
                command.topic,
                participants=command.participants,
                user_id=command.user_id,
            )
        return [
            f"Context initialized: conversation_id={context.conversation_id}",
            f"Participants: {', '.join(context.participants) or '-'}",
        ]

    def record(self, command: ContextRecordCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        message = ConversationMessage(
            message_id=command.message_id or str(uuid4()),
            conversation_id=command.conversation_id,
            role=MessageRole(command.role),
            content=command.content,
            speaker_id=command.speaker_id,
            timestamp=utc_now(),
            speaker_name=command.speaker_name,
        )
        with _engine(settings) as engine:
            context = engine.record_message(message)
        return [
            f"Message recorded: message_id={message.message_id}",
            f"Turns: {len(context.turn_history)}",
            f"Next speaker: {context.next_speaker or '(any)'}",
        ]

    def register(self, command: ContextRegisterCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _engine(settings) as engine:
            context = engine.register_participant(
                command.conversation_id,
                command.participant_id,
                name=command.name,
            )
        return [
            f"Participants: {', '.join(context.participants)}",
            f"Next speaker: {context.next_speaker or '(any)'}",
        ]

    def summary(self, command: ContextLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _engine(settings) as engine:
            return engine.summarize(command.conversation_id).splitlines()

    def next_speaker(self, command: ContextLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _engine(settings) as engine:
            context = engine.get_context(command.conversation_id)
            if context is None:
                return [f"Conversation not found: {command.conversation_id}"]
            speaker = engine.next_speaker(context.turn_history, context.participants)
        return [f"Next speaker: {speaker or '(any)'}"]

    def show(self, command: ContextLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _engine(settings) as engine:
            context = engine.get_context(command.conversation_id)
        if context is None:
            return [f"Conversation not found: {command.conversation_id}"]
        return [json.dumps(context.to_dict(), ensure_ascii=False, indent=2)]

    def cleanup(self, command: ContextCleanupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        backend = SqlCacheBackend(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.queue.sqlite_busy_timeout_ms,
        )
        backend.init_schema()
        try:
            purged = backend.purge_expired()
        finally:
            backend.close()
        return [f"Purged expired cache entries: {purged}"]


@contextmanager
def _engine(settings: Settings) -> Iterator[ContextEngine]:
    repository = ContextRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.queue.sqlite_busy_timeout_ms,
    )
    backend = SqlCacheBackend(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.queue.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        with open_generator(settings) as generator:
            yield ContextEngine(
                repository,
                PointExtractor(generator),
                cache=LayeredCache(
                    backend,
                    default_ttl_hours=settings.cache.ttl_hours,
                    max_fetch_workers=settings.cache.max_fetch_workers,
                ),
                cache_ttl_hours=settings.cache.ttl_hours,
            )
    finally:
        backend.close()
        repository.close()
