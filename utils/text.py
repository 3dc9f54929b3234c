"""Text cleanup helpers for LLM output and entity names."""

from __future__ import annotations

import json
import re
from difflib import SequenceMatcher
from typing import Any, List, Optional

from unidecode import unidecode


_PAREN_LINK = re.compile(r"\s*\(\[.*?\]\(.*?\)\)")
_MD_LINK = re.compile(r"\s*\[([^\]]+)\]\([^)]+\)")
_NUMERIC_MARKER = re.compile(r"\s*\[\d+(?:\s*,\s*\d+)*\]")
_SOURCE_MARKER = re.compile(r"\s*\[(?:source|citation)[^\]]*\]", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_NAME_TOKENS = re.compile(r"[a-z0-9]+")

NAME_STOPWORDS = {"the", "restaurant", "and", "a", "by", "chef"}


def strip_citations(text: Optional[str]) -> str:
    """Remove markdown citation links left in model output, keeping link labels."""
    if not text:
        return ""
    value = _PAREN_LINK.sub("", str(text))
    value = _MD_LINK.sub(lambda match: " " + match.group(1), value)
    value = _NUMERIC_MARKER.sub("", value)
    value = _SOURCE_MARKER.sub("", value)
    value = re.sub(r"\s{2,}", " ", value)
    value = re.sub(r"\s+([.,;:!?])", r"\1", value)
    return value.strip()


def extract_json(text: Optional[str]) -> Any:
    """Parse the first JSON object embedded in ``text`` (tolerates code fences and preambles)."""
    raw = str(text or "").strip()
    if not raw:
        raise ValueError("empty response")
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    match = _JSON_OBJECT.search(raw)
    if not match:
        raise ValueError("no JSON object found in response")
    return json.loads(match.group(0))


def name_tokens(name: Optional[str]) -> List[str]:
    text = unidecode(strip_citations(name)).lower().replace("'", "").replace("’", "")
    return [token for token in _NAME_TOKENS.findall(text) if token not in NAME_STOPWORDS]


def name_similarity(left: Optional[str], right: Optional[str]) -> float:
    """0..1 similarity of two entity names after normalization."""
    a = " ".join(name_tokens(left))
    b = " ".join(name_tokens(right))
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return SequenceMatcher(None, a, b).ratio()
