"""Normalise free-form model output into ``{command, explanation, confidence}``.

Models are asked for a JSON object but do not always comply: reasoning
models prepend ``<think>`` blocks, chat models wrap answers in Markdown
fences, and small local models sometimes just print a shell prompt line.
``parse_reasoning_output`` tries each shape in turn and raises
``MalformedResponseError`` when none yields a command.
"""

from __future__ import annotations

import json
import logging
import re

from llm.errors import MalformedResponseError
from schemas.entities import ReasoningResponse

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
FENCED_CONFIDENCE = 0.7
PROMPT_LINE_CONFIDENCE = 0.6

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```[\w-]*\s*\n?(.*?)```", re.DOTALL)
_PROMPT_LINE_RE = re.compile(r"^\s*(?:\$|>|command:)\s*(.+)$", re.IGNORECASE | re.MULTILINE)


def parse_reasoning_output(raw: str) -> ReasoningResponse:
    if not raw or not raw.strip():
        raise MalformedResponseError("Empty response from backend")

    text = _THINK_RE.sub("", raw).strip()

    data = _first_json_object(text)
    if data is not None:
        return _from_json(data, raw, DEFAULT_CONFIDENCE)

    fence = _FENCE_RE.search(text)
    if fence:
        body = fence.group(1).strip()
        data = _first_json_object(body)
        if data is not None:
            return _from_json(data, raw, DEFAULT_CONFIDENCE)
        if body:
            return ReasoningResponse(
                command=body.splitlines()[0].strip(),
                explanation="Extracted from code block",
                confidence=FENCED_CONFIDENCE,
                raw_response=raw,
            )

    line = _PROMPT_LINE_RE.search(text)
    if line and line.group(1).strip():
        return ReasoningResponse(
            command=line.group(1).strip(),
            explanation="Extracted from response text",
            confidence=PROMPT_LINE_CONFIDENCE,
            raw_response=raw,
        )

    logger.warning("Could not extract a command from backend response (%d chars)", len(raw))
    raise MalformedResponseError("No command found in backend response")


def _first_json_object(text: str) -> dict | None:
    """Decode the first balanced ``{...}`` object in *text*, if any."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def _from_json(data: dict, raw: str, default_confidence: float) -> ReasoningResponse:
    command = data.get("command")
    if not isinstance(command, str) or not command.strip():
        raise MalformedResponseError("Backend JSON has no command field")

    return ReasoningResponse(
        command=command.strip(),
        explanation=str(data.get("explanation") or ""),
        confidence=_clamp_confidence(data.get("confidence"), default_confidence),
        raw_response=raw,
    )


def _clamp_confidence(value, default: float) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return default
    if confidence != confidence:  # NaN
        return default
    return max(0.0, min(1.0, confidence))
