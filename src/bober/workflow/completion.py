"""Completion detection for phase responses.

Parses an agent's raw text into the phase's structured response and extracts
its completion flag. Anything that cannot be parsed yields a safe default
that never signals completion, so a malformed response can never end a
phase early.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter, ValidationError

from bober.models import PhaseName, PhaseResponse

_FENCED = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

_RESPONSE_ADAPTER: TypeAdapter[PhaseResponse] = TypeAdapter(PhaseResponse)


@dataclass(frozen=True)
class Detection:
    """Result of parsing one agent response."""

    phase: PhaseName
    payload: PhaseResponse | None = None
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.payload is not None

    @property
    def is_complete(self) -> bool:
        return self.payload is not None and self.payload.is_complete


def detect_completion(raw_response: str | None, phase: PhaseName) -> Detection:
    """Parse *raw_response* as *phase*'s structured shape.

    Accepts bare JSON, JSON inside a markdown code fence, or JSON surrounded
    by prose. Keys are matched case-insensitively (``IsComplete``,
    ``isComplete`` and ``is_complete`` are equivalent).
    """
    text = (raw_response or "").strip()
    if not text:
        return Detection(phase, error="empty response")

    try:
        data = json.loads(_extract_json(text))
    except json.JSONDecodeError as exc:
        return Detection(phase, error=f"invalid JSON: {exc.msg}")

    if not isinstance(data, dict):
        return Detection(phase, error=f"expected a JSON object, got {type(data).__name__}")

    data = _snake_keys(data)
    data["phase"] = phase.value

    try:
        payload = _RESPONSE_ADAPTER.validate_python(data)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        return Detection(phase, error=f"schema mismatch: {', '.join(fields)}")

    return Detection(phase, payload=payload)


def _extract_json(text: str) -> str:
    fenced = _FENCED.search(text)
    if fenced:
        return fenced.group(1)
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_to_snake(str(k)): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def _to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()
