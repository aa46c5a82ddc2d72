"""
JSON extraction and parsing utilities for LLM responses.

Vision and text models often wrap JSON in markdown fences or surround it
with prose. These helpers pull out the first JSON value and parse it
without raising.

Example:
    from mediaflow.utils.json_utils import extract_json, parse_json_safe

    reply = 'Sure! ```json\\n{"sentiment": "positive"}\\n```'
    data = parse_json_safe(extract_json(reply, json_type="object"), default={})
"""

import json
import logging
import re
from typing import Any, Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BRACKETS = {"object": ("{", "}"), "array": ("[", "]")}


def extract_json(
    text: str,
    json_type: Literal["object", "array", "auto"] = "auto",
) -> str:
    """
    Extract the first JSON object or array from an LLM reply.

    Args:
        text: Raw LLM response
        json_type: "object", "array", or "auto" (whichever bracket comes first)

    Returns:
        JSON substring (empty string if none found)

    Example:
        >>> extract_json('Labels: ["cat", "sofa"] done', json_type="array")
        '["cat", "sofa"]'
    """
    if not text:
        return ""

    candidate = text.strip()
    fenced = _CODE_FENCE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    if json_type == "auto":
        positions = {
            kind: candidate.find(open_char)
            for kind, (open_char, _) in _BRACKETS.items()
        }
        found = {kind: pos for kind, pos in positions.items() if pos != -1}
        if not found:
            return ""
        json_type = min(found, key=found.get)

    open_char, close_char = _BRACKETS[json_type]
    start = candidate.find(open_char)
    if start == -1:
        return ""

    return _balanced_slice(candidate, start, open_char, close_char)


def _balanced_slice(text: str, start: int, open_char: str, close_char: str) -> str:
    """Return text[start:] up to the bracket that balances text[start]."""
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif not in_string:
            if char == open_char:
                depth += 1
            elif char == close_char:
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]

    # Unbalanced - let the parser report it
    return text[start:]


def parse_json_safe(
    json_str: str,
    default: T = None,  # type: ignore
    log_errors: bool = True,
) -> Any | T:
    """
    Parse a JSON string, returning default on failure.

    Args:
        json_str: JSON string to parse
        default: Value returned when parsing fails
        log_errors: Whether to log parse failures

    Returns:
        Parsed value or default
    """
    if not json_str:
        return default

    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        if log_errors:
            logger.warning(f"Failed to parse JSON: {e}. Input: {json_str[:200]}")
        return default


def parse_string_list(text: str, limit: int | None = None) -> list[str]:
    """
    Parse a list of strings from an LLM reply.

    Accepts a JSON array, falling back to comma/newline separated text.

    Args:
        text: Raw LLM response
        limit: Maximum number of items to keep

    Returns:
        Deduplicated, stripped, non-empty strings in original order
    """
    parsed = parse_json_safe(extract_json(text, json_type="array"), default=None, log_errors=False)
    if isinstance(parsed, list):
        items = [str(item) for item in parsed]
    else:
        items = re.split(r"[,\n]", text or "")

    result: list[str] = []
    for item in items:
        cleaned = item.strip().strip("-*•\"'").strip()
        if cleaned and cleaned not in result:
            result.append(cleaned)

    return result[:limit] if limit is not None else result
