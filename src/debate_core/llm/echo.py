"""Deterministic local generator for smoke runs without a remote endpoint."""

from __future__ import annotations

import json

from debate_core.llm.base import ChatMessage


class EchoTextGenerator:
    """Answers JSON-shaped requests with minimal valid payloads, otherwise echoes."""

    def generate(self, system_instruction: str, messages: list[ChatMessage]) -> str:
        last = messages[-1].content if messages else ""
        lowered = system_instruction.lower()
        if "keypoints" in lowered:
            return json.dumps({"summary": last[:200], "keyPoints": _sentences(last)[:3]})
        if "experts" in lowered:
            return json.dumps({"experts": []})
        if "topics" in lowered:
            return json.dumps({"topics": []})
        if "questions" in lowered:
            return "\n".join(
                line.strip() for line in last.splitlines() if line.strip().endswith("?")
            )
        if "key points" in lowered:
            return "\n".join(_sentences(last)[:3])
        return last


def _sentences(text: str) -> list[str]:
    return [part.strip() + "." for part in text.split(".") if part.strip()]
