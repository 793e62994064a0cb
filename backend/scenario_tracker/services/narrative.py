"""Narrative text cleanup and inline structured-block extraction."""

from __future__ import annotations

import json
import re
from typing import Any

from scenario_tracker.logging import get_logger

logger = get_logger("services.narrative")

STRUCTURED_BLOCK_LABEL = "wst"

_STRUCTURED_BLOCK_PATTERN = re.compile(
    rf"```{STRUCTURED_BLOCK_LABEL}\b\s*(.*?)```",
    re.IGNORECASE | re.DOTALL,
)
_NON_NARRATIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<thinking>.*?</thinking>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<thought>.*?</thought>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<council\b.*?</council>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<lumiaooc>.*?</lumiaooc>", re.IGNORECASE | re.DOTALL),
    _STRUCTURED_BLOCK_PATTERN,
)


def _strip_once(text: str) -> str:
    for pattern in _NON_NARRATIVE_PATTERNS:
        text = pattern.sub("", text)
    return text.strip()


def strip_non_narrative(text: str | None) -> str:
    """
    Remove reasoning tags, out-of-character tags and structured blocks.

    Repeats until nothing changes, so removing one span can never expose a
    new one to a second call.
    """
    if not isinstance(text, str):
        return ""
    current = text
    while True:
        cleaned = _strip_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def merge_continuation(current_text: str, previous_text: str | None, is_continuation: bool) -> str:
    if not is_continuation or not previous_text:
        return current_text
    return f"{previous_text.strip()} {current_text.strip()}"


def render_structured_block(payload: dict[str, Any]) -> str:
    # A fence inside a string value must not close the block.
    body = json.dumps(payload, indent=2, ensure_ascii=False).replace("`", "\\u0060")
    return f"```{STRUCTURED_BLOCK_LABEL}\n{body}\n```"


def extract_structured_block(raw_text: str | None) -> dict[str, Any] | None:
    """Parse the first structured block in raw (not yet stripped) text."""
    if not raw_text or not isinstance(raw_text, str):
        return None
    match = _STRUCTURED_BLOCK_PATTERN.search(raw_text)
    if not match:
        return None
    body = match.group(1).strip()
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        logger.warning("Structured block parse failed: %s | raw: %s", exc, body[:200])
        return None
    if not isinstance(parsed, dict):
        logger.warning("Structured block is not a JSON object (got %s)", type(parsed).__name__)
        return None
    return parsed
