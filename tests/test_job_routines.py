from __future__ import annotations

import json
import threading

import allure
import pytest

from debate_core.errors import FatalError, RetryableError
from debate_core.jobs.models import (
    ExtractTopicsPayload,
    GenerateResponsePayload,
    PriorMessage,
    SelectExpertsPayload,
)
from debate_core.jobs.output_parsing import parse_json_object, recover_json_object
from debate_core.jobs.routines import MAX_TOPIC_SOURCE_CHARS, NO_RESPONSE_TEXT, JobRoutines
from debate_core.llm.base import ChatMessage
from debate_core.resilience.retry import RetryOptions

pytestmark = [
    allure.epic("Job Runtime"),
    allure.feature("Job Routines"),
]


class _RecordingGenerator:
    def __init__(self, *responses: str) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, list[ChatMessage]]] = []

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        self.calls.append((system_instruction, messages))
        return self.responses.pop(0)


class _HangingGenerator:
    def __init__(self) -> None:
        self.release = threading.Event()
        self.calls = 0

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        self.calls += 1
        self.release.wait(5)
        return "too late"


def _routines(generator: object, **kwargs: object) -> JobRoutines:
    return JobRoutines(
        generator,  # type: ignore[arg-type]
        retry_options=RetryOptions(max_attempts=2, initial_delay=0.0, max_delay=0.0),
        sleep=lambda _: None,
        clock_ms=lambda: 1_700_000_000_000,
        **kwargs,  # type: ignore[arg-type]
    )


def test_recover_json_object_from_fenced_and_embedded_text() -> None:
    assert recover_json_object('{"a": 1}') == {"a": 1}
    assert recover_json_object('Sure!\n```json\n{"a": 2}\n```\nDone.') == {"a": 2}
    assert recover_json_object('Here you go: {"a": {"b": 3}} hope it helps') == {"a": {"b": 3}}
    assert recover_json_object("[1, 2]") is None
    assert recover_json_object("") is None


def test_parse_json_object_raises_fatal_error() -> None:
    with pytest.raises(FatalError, match="Unparseable extract-topics response"):
        parse_json_object("no json here", purpose="extract-topics")


def test_generate_response_builds_persona_and_reports_progress() -> None:
    generator = _RecordingGenerator("  I support rail.  ")
    progress: list[int] = []
    payload = GenerateResponsePayload(
        participant_id="p1",
        participant_name="Ada",
        stance="con",
        background="Transport economist",
        expertise=("pricing", "urban policy"),
        topic="Cities should ban cars",
        messages=(PriorMessage(role="user", content="Why?"),),
    )

    result = _routines(generator).run(payload, report_progress=progress.append)

    instruction, messages = generator.calls[0]
    assert result == {
        "response": "I support rail.",
        "participantId": "p1",
        "participantName": "Ada",
    }
    assert progress == [30, 80]
    assert "You are Ada" in instruction
    assert "fundamentally opposed" in instruction
    assert "pricing, urban policy" in instruction
    assert [message.content for message in messages] == ["Why?"]


def test_generate_response_falls_back_on_empty_text() -> None:
    payload = GenerateResponsePayload(
        participant_id="p1",
        participant_name="Ada",
        stance="pro",
        background="",
        expertise=(),
        topic="T",
    )

    result = _routines(_RecordingGenerator("   ")).run(payload)

    assert result["response"] == NO_RESPONSE_TEXT


def test_select_experts_alternates_stance_and_assigns_ids() -> None:
    experts = [
        {"name": "A", "stance": "con", "expertise": ["x"]},
        {"name": "B", "stance": "con", "id": "given-id"},
        {"name": "C", "stance": "pro"},
    ]
    generator = _RecordingGenerator(json.dumps({"experts": experts}))
    progress: list[int] = []

    result = _routines(generator).run(
        SelectExpertsPayload(topic="Cities", expert_type="historical", count=2),
        report_progress=progress.append,
    )

    assert progress == [20, 70]
    assert [expert["stance"] for expert in result["experts"]] == ["pro", "con"]
    assert [expert["id"] for expert in result["experts"]] == [
        "expert-1700000000000-0",
        "given-id",
    ]
    assert result["experts"][0]["expertise"] == ["x"]
    assert "historical figures" in generator.calls[0][1][0].content


def test_extract_topics_truncates_long_content_and_caps_topics() -> None:
    topics = [{"title": f"t{index}", "confidence": 0.5} for index in range(6)]
    generator = _RecordingGenerator(json.dumps({"topics": topics}))

    result = _routines(generator).run(
        ExtractTopicsPayload(content="x" * 9000, source_type="pdf", max_topics=3),
    )

    sent = generator.calls[0][1][0].content
    assert len(sent) == MAX_TOPIC_SOURCE_CHARS + 3
    assert sent.endswith("...")
    assert [topic["title"] for topic in result["topics"]] == ["t0", "t1", "t2"]


def test_call_deadline_turns_hang_into_retryable_timeout() -> None:
    generator = _HangingGenerator()
    payload = SelectExpertsPayload(topic="Cities", expert_type="ai")
    try:
        with pytest.raises(RetryableError, match="timeout"):
            _routines(generator, call_timeout_seconds=0.05).run(payload)
    finally:
        generator.release.set()

    assert generator.calls == 2
