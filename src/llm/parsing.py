"""Best-effort JSON extraction from free-text model output."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Union

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class Parsed:
    value: Dict[str, Any]


@dataclass(frozen=True)
class Fallback:
    raw: str
    reason: str = ""


ParseResult = Union[Parsed, Fallback]


def extract_json(text: str) -> ParseResult:
    """Pull the outermost ``{...}`` block out of ``text`` and decode it.

    Models often wrap JSON in prose or code fences, so the widest brace span
    is tried. Anything that does not decode to an object is a Fallback
    carrying the raw text.
    """
    text = text or ""
    match = _OBJECT_RE.search(text)
    if not match:
        return Fallback(raw=text, reason="no JSON object found")
    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return Fallback(raw=text, reason=f"invalid JSON: {e.msg}")
    return Parsed(value=value)
