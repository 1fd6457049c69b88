from __future__ import annotations

import json
import logging
import re
from typing import Any

from app.core.errors import ParseError

logger = logging.getLogger(__name__)

RAW_SNIPPET_CHARS = 500

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```\s*([\s\S]*?)\s*```")
_BRACE_SPAN_RE = re.compile(r"\{[\s\S]*\}")


def _strict_loads(s: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(s)
    except (TypeError, ValueError):
        return False, None


def parse_llm_json(raw_text: str) -> Any:
    """Extract a JSON value from free-form model output.

    Tried in order, first strict parse that succeeds wins:
    the whole text, a ```json fence, any ``` fence, then the span from the
    first "{" to the last "}". Raises ParseError otherwise.
    """
    text = raw_text if isinstance(raw_text, str) else ""
    s = text.strip()
    if s.startswith("\ufeff"):
        s = s[1:]

    ok, value = _strict_loads(s)
    if ok:
        return value

    m = _JSON_FENCE_RE.search(s)
    if m:
        ok, value = _strict_loads(m.group(1))
        if ok:
            logger.debug("llm_json: parsed json-tagged fence")
            return value

    m = _ANY_FENCE_RE.search(s)
    if m:
        ok, value = _strict_loads(m.group(1))
        if ok:
            logger.debug("llm_json: parsed untagged fence")
            return value

    m = _BRACE_SPAN_RE.search(s)
    if m:
        ok, value = _strict_loads(m.group(0))
        if ok:
            logger.debug("llm_json: parsed brace span")
            return value

    snippet = text[:RAW_SNIPPET_CHARS]
    logger.warning("llm_json: no JSON found in model output (len=%d)", len(text))
    raise ParseError(
        f"Failed to parse JSON from LLM response. Original content: {snippet}...",
        raw_text=snippet,
    )


def parse_llm_json_object(raw_text: str) -> dict[str, Any]:
    value = parse_llm_json(raw_text)
    if not isinstance(value, dict):
        raise ParseError(
            f"Expected a JSON object in LLM response, got {type(value).__name__}",
            raw_text=(raw_text or "")[:RAW_SNIPPET_CHARS],
        )
    return value
