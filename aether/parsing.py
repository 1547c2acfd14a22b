"""
Tolerant parsing of model output.

Models are asked for JSON but do not always comply. Every parse produces one
of three results instead of raising:

    Parsed(value)   - the text (or its fenced body) is valid JSON
    Raw(text)       - not JSON, but non-empty text usable as-is
    Invalid(reason) - nothing usable

Fallback chain: direct JSON -> JSON inside a ``` fence -> first {...} object
embedded in prose (optional) -> raw text (when allowed) -> Invalid.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class Parsed:
    value: Any


@dataclass(frozen=True)
class Raw:
    text: str


@dataclass(frozen=True)
class Invalid:
    reason: str


ParseResult = Union[Parsed, Raw, Invalid]


def _try_json(text: str):
    try:
        return Parsed(json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return None


def _embedded_object(text: str):
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return _try_json(text[start:end + 1])


def parse_model_output(text: str, allow_raw: bool = True, embedded: bool = True) -> ParseResult:
    """
    Parse model output through the fallback chain.

    Args:
        text: Raw completion text
        allow_raw: Return Raw(text) when no JSON can be recovered
        embedded: Look for a {...} object inside surrounding prose. Off for
            shell commands, whose text may legitimately contain JSON.

    Returns:
        Parsed, Raw or Invalid
    """
    if text is None or not text.strip():
        return Invalid("empty output")

    stripped = text.strip()

    result = _try_json(stripped)
    if result is not None:
        return result

    fenced = _FENCED_BLOCK.search(stripped)
    if fenced:
        result = _try_json(fenced.group(1).strip())
        if result is not None:
            return result

    if embedded:
        result = _embedded_object(stripped)
        if result is not None:
            return result

    if allow_raw:
        return Raw(stripped)

    logger.debug(f"[parse] Not JSON: {stripped[:200]!r}")
    return Invalid("output is not valid JSON")


def parse_json_object(text: str) -> ParseResult:
    """Like parse_model_output, but only a JSON object counts as Parsed."""
    result = parse_model_output(text, allow_raw=False)
    if isinstance(result, Parsed) and not isinstance(result.value, dict):
        return Invalid(f"expected a JSON object, got {type(result.value).__name__}")
    return result
