"""
Structured output guardrails for model responses.
SafeJsonParser strips markdown fences, isolates the first JSON object and repairs the
mistakes models commonly make (trailing commas, invalid escapes) before json.loads.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from core.exceptions import StructuredOutputError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def _fix_common_json_issues(s: str) -> str:
    """Remove trailing commas and other common invalid JSON."""
    s = re.sub(r",\s*}", "}", s)
    s = re.sub(r",\s*]", "]", s)
    return s


def _fix_invalid_json_escapes(s: str) -> str:
    """
    Fix invalid backslash escapes in JSON string.
    Models often produce e.g. \\p or \\$ in strings; JSON only allows \\ \" \\/ \\b \\f \\n \\r \\t \\uXXXX.
    """
    def repl(m: re.Match) -> str:
        return "\\\\" + m.group(1)

    return re.sub(
        r'\\(?!["\\\\/bfnrt]|u[0-9a-fA-F]{4})(.)',
        repl,
        s,
    )


def _extract_json_object(text: str) -> str:
    """Extract the first {...} object from text (brace-balanced, string-aware)."""
    start = text.find("{")
    if start < 0:
        return text
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
                return text[start : i + 1]
    return text[start:]


def repair_json(text: str) -> str:
    """Apply all repair steps; returns the candidate JSON string."""
    stripped = (text or "").strip()
    m = _FENCE.search(stripped)
    if m:
        stripped = m.group(1).strip()
    stripped = _extract_json_object(stripped)
    stripped = _fix_common_json_issues(stripped)
    return _fix_invalid_json_escapes(stripped)


class SafeJsonParser:
    """
    Wraps JSON parsing with repair steps and consistent error handling.
    Keeps the raw and repaired text of the last call for logging.
    """

    def __init__(self, trace_id: str = "") -> None:
        self.trace_id = trace_id
        self._last_raw: str = ""
        self._last_repaired: str = ""

    def parse(self, raw: str) -> dict[str, Any]:
        """Parse raw model output to a dict. Raises StructuredOutputError on failure or non-object JSON."""
        self._last_raw = raw or ""
        self._last_repaired = repair_json(self._last_raw)
        try:
            data = json.loads(self._last_repaired)
        except json.JSONDecodeError as e:
            logger.debug(
                "JSON repair failed trace_id=%s raw_preview=%s",
                self.trace_id,
                self._last_raw[:200],
            )
            raise StructuredOutputError(f"Invalid JSON: {e}", trace_id=self.trace_id) from e
        if not isinstance(data, dict):
            raise StructuredOutputError(
                f"Expected a JSON object, got {type(data).__name__}",
                trace_id=self.trace_id,
            )
        return data

    @property
    def last_raw(self) -> str:
        return self._last_raw

    @property
    def last_repaired(self) -> str:
        return self._last_repaired
