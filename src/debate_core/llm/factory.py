"""Build the configured text generator."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from debate_core.config import Settings
from debate_core.llm.base import TextGenerator
from debate_core.llm.echo import EchoTextGenerator
from debate_core.llm.openai_compatible import OpenAICompatibleGenerator


def build_generator(settings: Settings) -> TextGenerator:
    if settings.llm.backend == "echo":
        return EchoTextGenerator()
    return OpenAICompatibleGenerator(
        api_key=settings.llm.api_key,
        base_url=settings.llm.base_url,
        model=settings.llm.model,
        temperature=settings.llm.temperature,
        max_tokens=settings.llm.max_tokens,
        timeout_seconds=settings.llm.timeout_seconds,
    )


@contextmanager
def open_generator(settings: Settings) -> Iterator[TextGenerator]:
    """Yield the configured generator and release its HTTP client afterwards."""

    generator = build_generator(settings)
    try:
        yield generator
    finally:
        if isinstance(generator, OpenAICompatibleGenerator):
            generator.close()
