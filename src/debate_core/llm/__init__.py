"""Text-generation adapters."""

from debate_core.llm.base import ChatMessage, TextGenerator
from debate_core.llm.echo import EchoTextGenerator
from debate_core.llm.openai_compatible import GenerationError, OpenAICompatibleGenerator

__all__ = [
    "ChatMessage",
    "EchoTextGenerator",
    "GenerationError",
    "OpenAICompatibleGenerator",
    "TextGenerator",
]
