"""Text-generation capability consumed by job routines and the context engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One conversational message forwarded to the generator."""

    role: str
    content: str
    name: str | None = None


class TextGenerator(Protocol):
    """Opaque remote call returning text or raising."""

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        """Generate a completion for the system instruction and messages."""
