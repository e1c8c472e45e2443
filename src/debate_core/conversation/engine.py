"""Conversation context aggregation and turn-taking.

The engine owns the read-modify-write cycle for a conversation: it loads the
current context from the durable store, derives a new immutable
value from a produced message and persists it. Persistence is best-effort;
a failed write is logged and the freshly computed context is still returned.
Summaries and lookups are served through the cache when one is configured.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace

from debate_core.cache.layered import DEFAULT_TTL_HOURS, LayeredCache
from debate_core.conversation.extraction import PointExtractor
from debate_core.conversation.models import (
    MAX_MAIN_POINTS,
    MAX_PENDING_QUESTIONS,
    USER_SPEAKER_ID,
    ConversationContext,
    ConversationMessage,
    ParticipantContext,
    TurnRecord,
    keep_last,
)
from debate_core.conversation.repository import ContextRepository
from debate_core.conversation.turns import TurnLike, next_speaker
from debate_core.errors import PersistenceDegraded

logger = logging.getLogger(__name__)

CONTEXT_CACHE_PREFIX = "conversation:context:"
SUMMARY_MAIN_POINTS = 5
SUMMARY_QUESTIONS = 3

NOT_STARTED_SUMMARY = (
    "The debate is just starting. Provide your opening perspective on the topic."
)


class ContextEngine:
    """Maintains shared conversational state across participants."""

    def __init__(
        self,
        repository: ContextRepository,
        extractor: PointExtractor,
        *,
        cache: LayeredCache | None = None,
        cache_ttl_hours: float = DEFAULT_TTL_HOURS,
    ) -> None:
        self.repository = repository
        self.extractor = extractor
        self.cache = cache
        self.cache_ttl_hours = cache_ttl_hours
        self._locks: dict[str, _ConversationLock] = {}
        self._locks_guard = threading.Lock()

    def initialize(
        self,
        conversation_id: str,
        topic: str,
        participants: Sequence[str] = (),
        user_id: str | None = None,
    ) -> ConversationContext:
        """Create (or reset) the context of a conversation."""

        context = ConversationContext(
            conversation_id=conversation_id,
            topic=topic,
            user_id=user_id,
            participants=tuple(dict.fromkeys(participants)),
            participant_contexts={
                participant_id: ParticipantContext(participant_id=participant_id)
                for participant_id in dict.fromkeys(participants)
            },
        )
        with self._conversation_lock(conversation_id):
            self._persist(context)
        logger.info(
            "Initialized context %s with %d participant(s)",
            conversation_id,
            len(context.participants),
        )
        return context

    def register_participant(
        self,
        conversation_id: str,
        participant_id: str,
        name: str | None = None,
    ) -> ConversationContext:
        """Add a participant to the rotation; its context is keyed by ``name``."""

        key = name or participant_id
        with self._conversation_lock(conversation_id):
            context = self._load(conversation_id, authoritative=True) or ConversationContext(
                conversation_id,
            )
            if participant_id in context.participants:
                return context
            updated = replace(
                context,
                participants=(*context.participants, participant_id),
                participant_contexts={
                    **context.participant_contexts,
                    key: context.participant_contexts.get(
                        key,
                        ParticipantContext(participant_id=participant_id),
                    ),
                },
            )
            updated = replace(
                updated,
                next_speaker=next_speaker(updated.turn_history, updated.participants),
            )
            self._persist(updated)
            return updated

    def record_message(self, message: ConversationMessage) -> ConversationContext:
        """Fold one produced message into the conversation context.

        Recording the same message id twice returns the stored context
        unchanged.
        """

        with self._conversation_lock(message.conversation_id):
            context = self._load(
                message.conversation_id,
                authoritative=True,
            ) or ConversationContext(conversation_id=message.conversation_id)
            if context.has_message(message.message_id):
                logger.debug(
                    "Message %s already recorded for %s",
                    message.message_id,
                    message.conversation_id,
                )
                return context

            turn = TurnRecord(
                speaker_id=USER_SPEAKER_ID if message.is_user else message.speaker_id,
                timestamp=message.timestamp,
                message_id=message.message_id,
            )
            turn_history = (*context.turn_history, turn)
            key_points = self.extractor.extract_key_points(message.content)

            participant_contexts = context.participant_contexts
            if message.is_participant:
                name = message.speaker_name or message.speaker_id
                participant_contexts = dict(participant_contexts)
                # Registration without a name keys the placeholder by id.
                placeholder = (
                    participant_contexts.pop(message.speaker_id, None)
                    if name != message.speaker_id
                    else None
                )
                current = (
                    participant_contexts.get(name)
                    or placeholder
                    or ParticipantContext(participant_id=message.speaker_id)
                )
                participant_contexts[name] = current.with_statement(message.content, key_points)

            pending_questions = context.pending_questions
            if message.is_user:
                questions = self.extractor.extract_questions(message.content)
                pending_questions = keep_last(
                    (*pending_questions, *questions),
                    MAX_PENDING_QUESTIONS,
                )

            updated = replace(
                context,
                turn_history=turn_history,
                participant_contexts=participant_contexts,
                main_points=keep_last((*context.main_points, *key_points), MAX_MAIN_POINTS),
                pending_questions=pending_questions,
                next_speaker=next_speaker(turn_history, context.participants),
            )
            self._persist(updated)
            return updated

    def summarize(self, conversation_id: str) -> str:
        """Plain-text digest of recent points, open questions and the next speaker."""

        context = self._load(conversation_id)
        if context is None:
            return NOT_STARTED_SUMMARY
        return render_summary(context)

    def next_speaker(
        self,
        turn_history: Sequence[TurnLike],
        participants: Sequence[str] = (),
    ) -> str:
        return next_speaker(turn_history, participants)

    def get_context(self, conversation_id: str) -> ConversationContext | None:
        return self._load(conversation_id)

    def list_user_conversations(self, user_id: str) -> list[ConversationContext]:
        """Contexts owned by ``user_id``, served through the cache when configured."""

        if self.cache is None:
            return self.repository.list_for_user(user_id)
        values = self.cache.list_by_predicate(
            lambda value: isinstance(value, dict) and value.get("userId") == user_id,
            prefix=CONTEXT_CACHE_PREFIX,
        )
        return [ConversationContext.from_dict(value) for value in values]

    def _load(
        self,
        conversation_id: str,
        *,
        authoritative: bool = False,
    ) -> ConversationContext | None:
        """Cached read, or a durable store read when ``authoritative``."""

        key = _cache_key(conversation_id)
        if self.cache is not None and not authoritative:
            cached = self.cache.get(key)
            if isinstance(cached, dict):
                return ConversationContext.from_dict(cached)
        context = self.repository.get(conversation_id)
        if context is not None and self.cache is not None:
            self.cache.set(key, context.to_dict(), self.cache_ttl_hours)
        return context

    def _persist(self, context: ConversationContext) -> None:
        try:
            self.repository.save(context)
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "%s",
                PersistenceDegraded(
                    f"context write failed for {context.conversation_id}: {error}",
                ),
            )
            if self.cache is not None:
                self.cache.invalidate_memory(_cache_key(context.conversation_id))
            return
        if self.cache is not None:
            self.cache.set(
                _cache_key(context.conversation_id),
                context.to_dict(),
                self.cache_ttl_hours,
            )

    @contextmanager
    def _conversation_lock(self, conversation_id: str) -> Iterator[None]:
        """Serialize updates of one conversation; idle entries are dropped."""

        with self._locks_guard:
            entry = self._locks.setdefault(conversation_id, _ConversationLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[conversation_id]

    def active_lock_count(self) -> int:
        with self._locks_guard:
            return len(self._locks)


@dataclass(slots=True)
class _ConversationLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


def render_summary(context: ConversationContext) -> str:
    main_points = "\n".join(f"- {point}" for point in context.main_points[-SUMMARY_MAIN_POINTS:])
    questions = "\n".join(
        f"- {question}" for question in context.pending_questions[-SUMMARY_QUESTIONS:]
    )
    sections = ["Current Debate Context:"]
    sections.append(
        f"Main points raised:\n{main_points}"
        if main_points
        else "No main points have been established yet.",
    )
    sections.append(
        f"Recent user questions:\n{questions}"
        if questions
        else "No user questions have been asked yet.",
    )
    if context.next_speaker:
        sections.append(f"The next speaker should be: {context.next_speaker}")
    return "\n\n".join(sections)


def _cache_key(conversation_id: str) -> str:
    return f"{CONTEXT_CACHE_PREFIX}{conversation_id}"
