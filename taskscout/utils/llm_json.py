"""Helpers for pulling JSON out of free-form LLM replies.

Models wrap JSON in markdown fences, prepend prose, or emit a ``<think>``
block first. These helpers strip that and raise ``ValueError`` when no
usable JSON is present so callers can take their fallback path.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

logger = structlog.get_logger().bind(component="llm_json")


def strip_reasoning(raw: str) -> str:
    """Drop a leading <think>…</think> block, keeping the trace at DEBUG."""
    if "</think>" in raw:
        think_part, _, clean = raw.partition("</think>")
        logger.debug("model_reasoning_trace", trace=think_part.replace("<think>", "").strip()[:300])
        return clean
    return raw


def extract_json_array(raw: str) -> list[Any]:
    """Return the JSON array in ``raw``.

    Accepts either a bare array or an object carrying one under ``queries``.
    """
    clean = strip_reasoning(raw)
    obj_match = re.search(r"\{.*\}", clean, flags=re.DOTALL)
    arr_match = re.search(r"\[.*\]", clean, flags=re.DOTALL)

    # An object wrapper wins only when it starts before the array.
    if obj_match and (arr_match is None or obj_match.start() < arr_match.start()):
        try:
            parsed = json.loads(obj_match.group(0))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get("queries"), list):
            return parsed["queries"]

    if not arr_match:
        raise ValueError(f"No JSON array in LLM response: {clean[:100]}")
    parsed = json.loads(arr_match.group(0))
    if not isinstance(parsed, list):
        raise ValueError("LLM response is not a JSON array")
    return parsed


def extract_json_object(raw: str) -> dict[str, Any]:
    """Return the outermost JSON object in ``raw``."""
    clean = strip_reasoning(raw)
    match = re.search(r"\{.*\}", clean, flags=re.DOTALL)
    if not match:
        raise ValueError(f"No JSON object in LLM response: {clean[:100]}")
    parsed = json.loads(match.group(0))
    if not isinstance(parsed, dict):
        raise ValueError("LLM response is not a JSON object")
    return parsed
