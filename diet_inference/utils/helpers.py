"""
General helper utilities
"""
import json
from typing import Any, Optional


def safe_json_parse(text: Any, default: Any = None) -> Any:
    """Safely parse JSON string"""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return default


def parse_string_list(raw: Any) -> Optional[list[str]]:
    """
    Coerce a stored rule list into a clean list of strings.

    Accepts a list (JSON column) or a JSON-encoded string. Non-string entries
    are dropped and entries are trimmed. Returns None when the value cannot be
    read as a list at all so callers can log the degraded input.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        raw = safe_json_parse(raw)
    if not isinstance(raw, (list, tuple)):
        return None
    return [
        entry.strip()
        for entry in raw
        if isinstance(entry, str) and entry.strip()
    ]


def dedupe_preserving_order(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
