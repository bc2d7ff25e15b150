"""JSON helpers shared by adapters and the SQLite layer."""

import json
from typing import Any


def load_json_bytes(content: bytes | str) -> Any:
    """Decode raw bytes (UTF-8, BOM tolerated) as JSON.

    Raises ValueError on undecodable or malformed input.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    return json.loads(content)


def load_metadata(raw: str | dict | None) -> dict[str, Any]:
    """Decode a stored metadata column. Anything but a JSON object yields {}."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}
