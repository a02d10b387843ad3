"""Defensive extraction of JSON objects from free-form model output."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True)
class ParseFailure:
    """Model text that did not contain a usable JSON object."""

    raw: str
    reason: str

    def __bool__(self) -> bool:
        return False


ParseResult = Union[Mapping[str, Any], ParseFailure]


def strip_fences(message: str) -> str:
    return _FENCE_RE.sub("", message).strip()


def brace_span(text: str) -> Optional[str]:
    """Return the substring between the first ``{`` and the last ``}``."""

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    return text[start : end + 1]


def extract_json(message: Optional[str]) -> ParseResult:
    """Recover the JSON object embedded in ``message``.

    Markdown fences are removed, then the first-to-last brace span is parsed.
    When that span holds more than one object (prose between two replies,
    for example) the first balanced object is tried instead. Anything that
    still fails comes back as :class:`ParseFailure` rather than raising.
    """

    raw = message or ""
    sanitized = strip_fences(raw)
    span = brace_span(sanitized)
    if span is None:
        return ParseFailure(raw=raw, reason="no JSON object found")

    try:
        parsed = json.loads(span)
    except json.JSONDecodeError as exc:
        balanced = _first_balanced_object(sanitized)
        if balanced is None or balanced == span:
            return ParseFailure(raw=raw, reason=str(exc))
        try:
            parsed = json.loads(balanced)
        except json.JSONDecodeError as inner:
            return ParseFailure(raw=raw, reason=str(inner))

    if not isinstance(parsed, Mapping):
        return ParseFailure(raw=raw, reason=f"expected object, got {type(parsed).__name__}")
    return parsed


def _first_balanced_object(text: str) -> Optional[str]:
    start = None
    depth = 0
    in_string = False
    escape = False
    for idx, char in enumerate(text):
        if start is None:
            if char == "{":
                start = idx
                depth = 1
            continue
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


__all__ = ["ParseFailure", "ParseResult", "brace_span", "extract_json", "strip_fences"]
