"""HTTP client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import logging

import httpx

from debate_core.errors import FatalError, RetryableError
from debate_core.llm.base import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 60.0

_RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})


class GenerationError(RuntimeError):
    """Endpoint answered with an unusable response."""


class OpenAICompatibleGenerator:
    """``TextGenerator`` posting to ``{base_url}/chat/completions``.

    HTTP status codes are kept in error messages so the retry classifier can
    recognise rate limits and 5xx responses.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 500,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": system_instruction},
                *(_to_wire(message) for message in messages),
            ],
        }
        try:
            response = self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as exc:
            raise RetryableError(f"timeout calling chat completions: {exc}") from exc
        except httpx.TransportError as exc:
            raise RetryableError(f"connection reset calling chat completions: {exc}") from exc

        if response.status_code in _RETRYABLE_STATUS_CODES:
            raise RetryableError(f"HTTP {response.status_code}: {response.text[:200]}")
        if not response.is_success:
            raise FatalError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            payload = response.json()
            content = payload["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GenerationError(f"Malformed chat completion response: {exc}") from exc
        if not isinstance(content, str):
            raise GenerationError("Chat completion content is not text")
        usage = payload.get("usage") or {}
        logger.debug(
            "Chat completion ok: model=%s prompt_tokens=%s completion_tokens=%s",
            self.model,
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
        )
        return content

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAICompatibleGenerator:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _to_wire(message: ChatMessage) -> dict[str, str]:
    # Speaker names are free text and not valid for the "name" field.
    content = f"{message.name}: {message.content}" if message.name else message.content
    return {"role": message.role, "content": content}
