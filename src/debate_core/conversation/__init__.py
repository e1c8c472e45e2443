"""Turn-taking and conversational context aggregation."""

from debate_core.conversation.engine import ContextEngine, render_summary
from debate_core.conversation.extraction import PointExtractor
from debate_core.conversation.models import (
    UNCONSTRAINED_SPEAKER,
    USER_SPEAKER_ID,
    ConversationContext,
    ConversationMessage,
    MessageRole,
    ParticipantContext,
    TurnRecord,
)
from debate_core.conversation.repository import ContextRepository
from debate_core.conversation.turns import next_speaker, normalize_turns

__all__ = [
    "UNCONSTRAINED_SPEAKER",
    "USER_SPEAKER_ID",
    "ContextEngine",
    "ContextRepository",
    "ConversationContext",
    "ConversationMessage",
    "MessageRole",
    "ParticipantContext",
    "PointExtractor",
    "TurnRecord",
    "next_speaker",
    "normalize_turns",
    "render_summary",
]
