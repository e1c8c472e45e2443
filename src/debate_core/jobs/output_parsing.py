"""Best-effort recovery of JSON objects from generated text."""

from __future__ import annotations

import json
import re
from typing import Any

from debate_core.errors import FatalError

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def parse_json_object(text: str, *, purpose: str) -> dict[str, Any]:
    """Parse a JSON object from raw, fenced or brace-embedded text.

    Raises ``FatalError`` when nothing parseable is found; a retry would
    not make the same answer valid.
    """

    payload = recover_json_object(text)
    if payload is None:
        preview = text.strip()[:120]
        raise FatalError(f"Unparseable {purpose} response: {preview!r}")
    return payload


def recover_json_object(text: str) -> dict[str, Any] | None:
    stripped = text.strip()
    if not stripped:
        return None

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return payload

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load_dict(stripped[start : end + 1])


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed
