"""
JSON utilities for transcripts and JSON-encoded configuration values.
"""

import json
from typing import Any, List, Optional

from .errors import ConfigurationError


def canonical_json(value: Any) -> str:
    """Serialize a value deterministically.

    Keys are sorted and separators fixed so equal transcripts always produce the same
    string. Values JSON cannot represent are stringified.

    Args:
        value: Any JSON-like value (typically the transcript message list)

    Returns:
        Canonical JSON string
    """
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(',', ':'), default=str)


def parse_string_array(raw: Optional[str]) -> List[str]:
    """Parse a JSON array of strings such as '["foo", "ba+r"]'.

    Args:
        raw: JSON text, or None/blank for an empty list

    Returns:
        List of the string entries

    Raises:
        ConfigurationError: If the text is not valid JSON or not an array
    """
    if raw is None or not raw.strip():
        return []

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f'Invalid JSON array: {e}')

    if not isinstance(parsed, list):
        raise ConfigurationError(f'Expected JSON array, got {type(parsed).__name__}')

    return parsed
