"""Auto-detect export format and route to the matching adapter."""

from typing import Any

from chatport.importer.errors import ExportValidationError
from chatport.importer.parsers.base import SourceAdapter
from chatport.importer.parsers.discord import DiscordAdapter
from chatport.importer.parsers.generic import GenericAdapter, read_csv_rows
from chatport.importer.parsers.slack import ZIP_MAGIC, SlackAdapter
from chatport.utils.json import load_json_bytes

ADAPTERS: dict[str, type[SourceAdapter]] = {
    "discord": DiscordAdapter,
    "slack": SlackAdapter,
    "generic": GenericAdapter,
}


def get_adapter(fmt: str) -> SourceAdapter:
    try:
        return ADAPTERS[fmt]()
    except KeyError:
        raise ExportValidationError(f"Unknown format: {fmt}") from None


def _is_discord(obj: Any) -> bool:
    return isinstance(obj, dict) and ("guild" in obj or "channel" in obj)


def _is_slack(obj: dict) -> bool:
    channels = obj.get("channels")
    if isinstance(channels, list) and channels and isinstance(channels[0], dict):
        first = channels[0]
        if "is_archived" in first or "purpose" in first or "is_general" in first:
            return True
    users = obj.get("users")
    if isinstance(users, list) and users and isinstance(users[0], dict):
        if "profile" in users[0]:
            return True
    messages = obj.get("messages")
    if isinstance(messages, dict):
        return True
    return False


def detect_format(content: bytes, filename: str | None = None) -> str:
    """Detect export format from raw bytes.

    Returns "discord", "slack" or "generic".
    Raises ExportValidationError for unrecognized input.
    """
    if content.startswith(ZIP_MAGIC):
        return "slack"

    try:
        data = load_json_bytes(content)
    except (ValueError, UnicodeDecodeError):
        data = None

    if data is not None:
        if _is_discord(data):
            return "discord"
        if isinstance(data, list) and data and all(_is_discord(d) for d in data):
            return "discord"
        if isinstance(data, dict) and _is_slack(data):
            return "slack"
        if isinstance(data, (dict, list)):
            return "generic"
        raise ExportValidationError("Unrecognized JSON export")

    if filename and filename.lower().endswith((".csv", ".tsv")):
        return "generic"
    try:
        if read_csv_rows(content.decode("utf-8-sig")):
            return "generic"
    except UnicodeDecodeError:
        pass
    raise ExportValidationError("Unrecognized export format")
