"""Recovering the JSON payload from free-form model output."""

import json
import re
from typing import Any, Optional

from equity_insight.entities import ReportKind
from equity_insight.errors import ParseError, RefusalError


# Short replies containing these phrases are refusals, not malformed JSON
REFUSAL_PATTERNS = [
    "cannot find",
    "unable to find",
    "no data available",
    "doesn't exist",
    "don't have information",
    "valid ticker",
    "not a valid",
]
REFUSAL_MAX_LENGTH = 500

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove ``` and ```json markers anywhere in the text, then trim."""
    return _CODE_FENCE.sub("", text).strip()


def looks_like_refusal(text: str) -> bool:
    """
    Heuristic refusal check.

    Only short texts qualify; a full report that happens to mention
    "no data available" for one field is still a report.
    """
    if len(text) >= REFUSAL_MAX_LENGTH:
        return False
    lowered = text.lower()
    return any(pattern in lowered for pattern in REFUSAL_PATTERNS)


def extract_json(raw_text: str, kind: ReportKind, subject: Optional[str] = None) -> Any:
    """
    Extract and parse the JSON object embedded in model output.

    Preconditions:
    - raw_text is the model's text response (may be wrapped in prose or fences)

    Postconditions:
    - Returns the parsed JSON object (no schema validation here)
    - Raises RefusalError for short "not found" style replies, before parsing
    - Raises ParseError if no {...} span exists or it is not valid JSON

    Args:
        raw_text: Model output
        kind: Report kind the text was requested for
        subject: Ticker / IPO name / query, used in refusal messages

    Returns:
        Parsed JSON value
    """
    text = strip_code_fences(raw_text or "")

    if looks_like_refusal(text):
        raise RefusalError(text, kind=kind, subject=subject)

    first_brace = text.find("{")
    last_brace = text.rfind("}")
    if first_brace == -1 or last_brace == -1 or last_brace < first_brace:
        raise ParseError(
            f"Failed to parse {kind.value.replace('_', ' ')}: Invalid JSON structure received.",
            raw_text=raw_text,
        )

    payload = text[first_brace:last_brace + 1]
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise ParseError(
            f"Failed to parse {kind.value.replace('_', ' ')} JSON: {e.msg}",
            raw_text=raw_text,
        ) from e
