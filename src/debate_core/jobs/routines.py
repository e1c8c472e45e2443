"""Type-specific job routines around the text-generation capability.

Every external call is bounded by a per-call deadline and wrapped in the
retry utility; the routine only raises once retries are exhausted or the
failure is fatal.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, assert_never

from debate_core.errors import RetryableError
from debate_core.jobs.models import (
    STANCES,
    ExtractTopicsPayload,
    GenerateResponsePayload,
    GenerateSummaryPayload,
    JobPayload,
    SelectExpertsPayload,
)
from debate_core.jobs.output_parsing import parse_json_object
from debate_core.llm.base import ChatMessage, TextGenerator
from debate_core.resilience.retry import LLM_RETRY_OPTIONS, RetryOptions, with_retry

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT_SECONDS = 120.0
MAX_TOPIC_SOURCE_CHARS = 8000
NO_RESPONSE_TEXT = "No response generated"
NO_SUMMARY_TEXT = "No summary generated"

ProgressReporter = Callable[[int], None]


def _ignore_progress(_: int) -> None:
    return None


class JobRoutines:
    """Dispatch a typed payload to its routine and return the result dict."""

    def __init__(  # noqa: PLR0913
        self,
        generator: TextGenerator,
        *,
        retry_options: RetryOptions = LLM_RETRY_OPTIONS,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self.generator = generator
        self.retry_options = retry_options
        self.call_timeout_seconds = call_timeout_seconds
        self._sleep = sleep
        self._clock_ms = clock_ms

    def run(
        self,
        payload: JobPayload,
        *,
        max_attempts: int | None = None,
        report_progress: ProgressReporter = _ignore_progress,
    ) -> dict[str, Any]:
        options = (
            self.retry_options.with_overrides(max_attempts=max_attempts)
            if max_attempts is not None
            else self.retry_options
        )
        match payload:
            case GenerateResponsePayload():
                return self.generate_response(payload, options, report_progress)
            case SelectExpertsPayload():
                return self.select_experts(payload, options, report_progress)
            case ExtractTopicsPayload():
                return self.extract_topics(payload, options, report_progress)
            case GenerateSummaryPayload():
                return self.generate_summary(payload, options, report_progress)
            case _:
                assert_never(payload)

    def generate_response(
        self,
        payload: GenerateResponsePayload,
        options: RetryOptions,
        report_progress: ProgressReporter,
    ) -> dict[str, Any]:
        logger.info("Generating response for %s", payload.participant_name)
        messages = [
            ChatMessage(role=message.role, content=message.content, name=message.name)
            for message in payload.messages
        ]
        report_progress(30)
        text = self._call(_response_instruction(payload), messages, options)
        report_progress(80)
        return {
            "response": text.strip() or NO_RESPONSE_TEXT,
            "participantId": payload.participant_id,
            "participantName": payload.participant_name,
        }

    def select_experts(
        self,
        payload: SelectExpertsPayload,
        options: RetryOptions,
        report_progress: ProgressReporter,
    ) -> dict[str, Any]:
        logger.info("Selecting %d expert(s) for topic: %s", payload.count, payload.topic)
        if payload.expert_type == "historical":
            request = (
                f"Select {payload.count} historical figures who would have opposing "
                f'perspectives on: "{payload.topic}". Choose real historical figures '
                "known for their expertise and strong opinions."
            )
        else:
            request = (
                f"Create {payload.count} AI expert personas with opposing perspectives "
                f'on: "{payload.topic}". Give each a unique identifier and specialized expertise.'
            )
        instruction = (
            "You are an expert at selecting debaters. Return a JSON object with an "
            '"experts" array. Each expert has: name, background (2-3 sentences), '
            "stance (pro or con), perspective, expertise (array of 3-5 areas)."
        )
        report_progress(20)
        text = self._call(instruction, [ChatMessage(role="user", content=request)], options)
        report_progress(70)

        raw = parse_json_object(text, purpose="select-experts").get("experts")
        items = [item for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []
        stamp = self._clock_ms()
        experts = [
            {
                "id": str(item.get("id") or f"expert-{stamp}-{index}"),
                "name": str(item.get("name") or ""),
                "background": str(item.get("background") or ""),
                "stance": STANCES[index % len(STANCES)],
                "perspective": str(item.get("perspective") or ""),
                "expertise": _string_list(item.get("expertise")),
            }
            for index, item in enumerate(items[: payload.count])
        ]
        return {"experts": experts}

    def extract_topics(
        self,
        payload: ExtractTopicsPayload,
        options: RetryOptions,
        report_progress: ProgressReporter,
    ) -> dict[str, Any]:
        logger.info("Extracting up to %d topic(s) from %s", payload.max_topics, payload.source_type)
        content = payload.content
        if len(content) > MAX_TOPIC_SOURCE_CHARS:
            content = content[:MAX_TOPIC_SOURCE_CHARS] + "..."
        instruction = (
            f"Extract {payload.max_topics} debate-worthy topics from the content. "
            'Return a JSON object with a "topics" array, each having: title, '
            "confidence (0-1), keywords (array), summary."
        )
        report_progress(20)
        text = self._call(instruction, [ChatMessage(role="user", content=content)], options)
        report_progress(80)

        raw = parse_json_object(text, purpose="extract-topics").get("topics")
        topics = [item for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []
        return {"topics": topics[: payload.max_topics]}

    def generate_summary(
        self,
        payload: GenerateSummaryPayload,
        options: RetryOptions,
        report_progress: ProgressReporter,
    ) -> dict[str, Any]:
        logger.info("Summarizing %d message(s) on: %s", len(payload.messages), payload.topic)
        transcript = "\n\n".join(
            f"{message.label}: {message.content}" for message in payload.messages
        )
        instruction = (
            f'Summarize this debate on "{payload.topic}". Return a JSON object with: '
            "summary (2-3 paragraphs), keyPoints (array of key arguments from both sides)."
        )
        report_progress(20)
        text = self._call(instruction, [ChatMessage(role="user", content=transcript)], options)
        report_progress(80)

        parsed = parse_json_object(text, purpose="generate-summary")
        summary = parsed.get("summary")
        return {
            "summary": summary if isinstance(summary, str) and summary else NO_SUMMARY_TEXT,
            "keyPoints": _string_list(parsed.get("keyPoints")),
        }

    def _call(
        self,
        instruction: str,
        messages: list[ChatMessage],
        options: RetryOptions,
    ) -> str:
        return with_retry(
            lambda: self._call_with_deadline(instruction, messages),
            options,
            sleep=self._sleep,
        )

    def _call_with_deadline(self, instruction: str, messages: list[ChatMessage]) -> str:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm-call")
        try:
            future = executor.submit(self.generator.generate, instruction, messages)
            try:
                return future.result(timeout=self.call_timeout_seconds)
            except TimeoutError as exc:
                future.cancel()
                raise RetryableError(
                    f"timeout after {self.call_timeout_seconds:.0f}s calling text generator",
                ) from exc
        finally:
            executor.shutdown(wait=False)


def _response_instruction(payload: GenerateResponsePayload) -> str:
    expertise = ", ".join(payload.expertise) or "general knowledge"
    if payload.stance == "pro":
        position = "strongly supportive"
        guidance = "Highlight benefits and positive aspects. Refute common criticisms."
    else:
        position = "fundamentally opposed"
        guidance = "Emphasize risks and negative consequences. Challenge claims made by supporters."
    return (
        f"You are {payload.participant_name}, an expert with the following background: "
        f"{payload.background}.\n"
        f"Your areas of expertise include: {expertise}.\n"
        f'You have a {position} stance on the topic: "{payload.topic}".\n\n'
        f"{guidance}\n\n"
        "Respond in first person as this expert would. "
        "Keep responses concise (150-250 words) but substantive."
    )


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, str | int | float)]
