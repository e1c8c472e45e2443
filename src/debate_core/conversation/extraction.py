"""Key-point and question extraction delegated to the text generator.

Extraction is best-effort: failures are logged and yield an empty list so
context updates never block message delivery.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

from debate_core.llm.base import ChatMessage, TextGenerator
from debate_core.resilience.retry import LLM_RETRY_OPTIONS, RetryOptions, with_retry

logger = logging.getLogger(__name__)

MIN_KEY_POINT_SOURCE_CHARS = 50
MAX_KEY_POINTS_PER_MESSAGE = 3

KEY_POINTS_INSTRUCTION = (
    "Extract the 2-3 most important key points from the following message.\n"
    "Return each point as a concise sentence on a new line.\n"
    "Focus on the core claims or arguments, not background details.\n"
    "Do not add any commentary, numbering, or bullet points."
)
QUESTIONS_INSTRUCTION = (
    "Identify any explicit or implicit questions in the following user message.\n"
    "For each question, extract or reformulate it as a clear, standalone question.\n"
    "Return each question on a new line.\n"
    "If there are no questions, return an empty response."
)

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


class PointExtractor:
    """Wraps a ``TextGenerator`` with retry and line-based parsing."""

    def __init__(
        self,
        generator: TextGenerator,
        *,
        retry_options: RetryOptions = LLM_RETRY_OPTIONS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.generator = generator
        self.retry_options = retry_options
        self._sleep = sleep

    def extract_key_points(self, content: str) -> list[str]:
        if len(content) < MIN_KEY_POINT_SOURCE_CHARS:
            return []
        lines = self._generate_lines(KEY_POINTS_INSTRUCTION, content, purpose="key points")
        return lines[:MAX_KEY_POINTS_PER_MESSAGE]

    def extract_questions(self, content: str) -> list[str]:
        lines = self._generate_lines(QUESTIONS_INSTRUCTION, content, purpose="questions")
        return [line for line in lines if line.endswith("?")]

    def _generate_lines(self, instruction: str, content: str, *, purpose: str) -> list[str]:
        try:
            text = with_retry(
                lambda: self.generator.generate(
                    instruction,
                    [ChatMessage(role="user", content=content)],
                ),
                self.retry_options,
                sleep=self._sleep,
            )
        except Exception as error:  # noqa: BLE001
            logger.warning("Extracting %s failed: %s", purpose, error)
            return []
        return _split_lines(text)


def _split_lines(text: str) -> list[str]:
    lines: list[str] = []
    for raw in text.splitlines():
        line = _LIST_MARKER.sub("", raw).strip()
        if line:
            lines.append(line)
    return lines
