"""Coercion helpers for loosely typed export fields (CSV cells, JSON scalars)."""

from datetime import UTC, datetime
from typing import Any

_TRUE = {"1", "true", "yes", "y", "t"}

# Epoch values above this are milliseconds, not seconds.
_MS_THRESHOLD = 10**11


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in _TRUE


def as_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def as_str(value: Any) -> str | None:
    """Stringify a scalar id/name, mapping None and blanks to None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def as_list(value: Any, sep: str = ",") -> list[str]:
    """Accept a list, or a delimited string (CSV cells), as a list of strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [s for s in (as_str(v) for v in value) if s]
    return [s for s in (as_str(v) for v in str(value).split(sep)) if s]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings and unix epochs (seconds or ms) to aware UTC.

    Naive datetimes are assumed to be UTC. Unparseable input returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    text = str(value).strip()
    try:
        return _from_epoch(float(text))
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _from_epoch(seconds: float) -> datetime | None:
    if seconds > _MS_THRESHOLD:
        seconds /= 1000
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
