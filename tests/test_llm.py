from __future__ import annotations

import json

import allure
import httpx
import pytest

from debate_core.config import LlmSettings, Settings
from debate_core.errors import FatalError, RetryableError
from debate_core.llm.base import ChatMessage
from debate_core.llm.echo import EchoTextGenerator
from debate_core.llm.factory import build_generator, open_generator
from debate_core.llm.openai_compatible import GenerationError, OpenAICompatibleGenerator
from debate_core.resilience.failure_classifier import classify_failure

pytestmark = [
    allure.epic("Job Runtime"),
    allure.feature("Text Generation Backends"),
]


def _generator(handler) -> OpenAICompatibleGenerator:
    return OpenAICompatibleGenerator(
        api_key="sk-test",
        base_url="https://llm.example.com/v1/",
        model="test-model",
        transport=httpx.MockTransport(handler),
    )


def test_posts_chat_completion_and_returns_content() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": "Hello"}}], "usage": {}},
        )

    with _generator(_handler) as generator:
        text = generator.generate(
            "Be brief.",
            [ChatMessage(role="assistant", content="Trains.", name="Ada Lovelace")],
        )

    body = json.loads(seen[0].content)
    assert text == "Hello"
    assert str(seen[0].url) == "https://llm.example.com/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    assert body["model"] == "test-model"
    assert body["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "assistant", "content": "Ada Lovelace: Trains."},
    ]


@pytest.mark.parametrize(
    ("status_code", "error_type"),
    [(429, RetryableError), (503, RetryableError), (401, FatalError), (400, FatalError)],
)
def test_http_errors_map_to_taxonomy(status_code: int, error_type: type[Exception]) -> None:
    generator = _generator(lambda _request: httpx.Response(status_code, text="nope"))

    with pytest.raises(error_type, match=f"HTTP {status_code}"):
        generator.generate("x", [])


def test_transport_errors_are_retryable() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RetryableError) as excinfo:
        _generator(_handler).generate("x", [])

    assert classify_failure(excinfo.value).retryable


def test_malformed_body_raises_generation_error() -> None:
    generator = _generator(lambda _request: httpx.Response(200, json={"choices": []}))

    with pytest.raises(GenerationError):
        generator.generate("x", [])
    assert not classify_failure(GenerationError("Malformed chat completion")).retryable


def test_factory_selects_backend() -> None:
    assert isinstance(build_generator(Settings(llm=LlmSettings(backend="echo"))), EchoTextGenerator)
    assert isinstance(
        build_generator(Settings(llm=LlmSettings(api_key="sk-test"))),
        OpenAICompatibleGenerator,
    )


def test_echo_generator_answers_json_requests() -> None:
    echo = EchoTextGenerator()
    message = [ChatMessage(role="user", content="Trains are fast. Cars are flexible.")]

    summary = json.loads(echo.generate("Return keyPoints as JSON.", message))

    assert summary["keyPoints"] == ["Trains are fast.", "Cars are flexible."]
    assert json.loads(echo.generate("Return experts.", message)) == {"experts": []}


def test_open_generator_closes_http_client() -> None:
    settings = Settings(llm=LlmSettings(api_key="sk-test"))

    with open_generator(settings) as generator:
        assert isinstance(generator, OpenAICompatibleGenerator)
        client = generator._client
        assert not client.is_closed

    assert client.is_closed
