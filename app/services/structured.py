"""Structured extraction of a JSON object from LLM output.

Models are asked to answer with JSON only, but often wrap it in prose or a
Markdown fence. ``extract_json_object`` never raises: it returns an
``ExtractionResult`` that is either ``ok`` with ``data`` or carries ``error``.

Modes:
  strict  — the whole reply (fences stripped) must be one JSON object.
  lenient — the first balanced ``{...}`` block anywhere in the reply is used.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ExtractionResult:
    ok: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> ExtractionResult:
        return cls(ok=False, error=error)


def extract_json_object(text: str | None, strict: bool = False) -> ExtractionResult:
    if not text or not text.strip():
        return ExtractionResult.failure("empty reply")

    raw = _strip_fence(text.strip())

    if strict:
        return _parse_object(raw)

    direct = _parse_object(raw)
    if direct.ok:
        return direct

    block = first_balanced_block(raw)
    if block is None:
        return ExtractionResult.failure("no JSON object found")
    return _parse_object(block)


def first_balanced_block(text: str) -> str | None:
    """Return the first ``{...}`` substring with balanced braces.

    Braces inside JSON string literals (including escaped quotes) are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next opening brace
        start = text.find("{", start + 1)
    return None


def _parse_object(raw: str) -> ExtractionResult:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        return ExtractionResult.failure(f"invalid JSON: {exc.msg}")
    if not isinstance(data, dict):
        return ExtractionResult.failure("JSON value is not an object")
    return ExtractionResult(ok=True, data=data)


def _strip_fence(raw: str) -> str:
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
    return raw
