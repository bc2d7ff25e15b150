"""Schema sniffing for generic CSV/JSON dumps.

Generic exports come with arbitrary column names. ``classify_dataset`` guesses
whether a key set describes users, channels or messages, and ``map_fields``
maps canonical fields onto the actual keys.

Mapping runs in two passes over a fixed priority order: first exact
(case-insensitive) key matches for every field, then substring matches for the
fields still unmapped. A key claimed by one field is never reused by another.
"""

from collections.abc import Iterable
from typing import Literal

DatasetKind = Literal["users", "channels", "messages"]

# Aliases shorter than this only ever match exactly ("id" would otherwise
# match every *_id column).
_MIN_FUZZY_LEN = 4

_CONTENT_KEYS = ("content", "text", "body", "message")
_MESSAGE_HINTS = ("author", "sender", "timestamp", "created_at", "sent_at", "date", "from")
_USER_KEYS = ("email", "mail", "username", "user_name", "handle", "login")
_CHANNEL_KEYS = ("channel", "topic", "purpose", "members", "room")

FIELD_ALIASES: dict[str, list[tuple[str, tuple[str, ...]]]] = {
    "users": [
        ("id", ("id", "user_id", "userid", "uid", "member_id")),
        ("email", ("email", "email_address", "mail")),
        ("handle", ("username", "user_name", "handle", "login", "screen_name", "nick")),
        ("display_name", ("display_name", "displayname", "full_name", "real_name", "name")),
        ("avatar_url", ("avatar_url", "avatar", "image", "photo", "picture")),
        ("is_bot", ("is_bot", "bot")),
        ("is_deleted", ("is_deleted", "deleted", "deactivated")),
    ],
    "channels": [
        ("id", ("id", "channel_id", "room_id")),
        ("name", ("name", "channel_name", "channel", "title", "room")),
        ("description", ("description", "topic", "purpose", "about")),
        ("is_private", ("is_private", "private")),
        ("creator", ("creator", "created_by", "owner")),
        ("members", ("members", "member_ids", "participants")),
        ("archived", ("archived", "is_archived")),
    ],
    "messages": [
        ("id", ("id", "message_id", "msg_id")),
        ("author", ("author_id", "user_id", "author", "user", "sender", "from", "username")),
        ("channel", ("channel_id", "channel", "channel_name", "room", "conversation")),
        ("content", _CONTENT_KEYS),
        ("timestamp", ("timestamp", "created_at", "date", "time", "sent_at", "ts")),
        ("parent", ("parent_id", "thread_parent", "thread_id", "reply_to", "thread_ts", "parent")),
        ("attachments", ("attachments", "files", "attachment_url", "file_url")),
        ("reactions", ("reactions",)),
        ("embeds", ("embeds",)),
        ("pinned", ("pinned", "is_pinned")),
        ("system", ("is_system", "system")),
    ],
}


def _contains_any(keys: list[str], patterns: Iterable[str]) -> bool:
    return any(p in k for k in keys for p in patterns)


def classify_dataset(keys: Iterable[str]) -> DatasetKind | None:
    """Guess the entity type a row/object key set describes."""
    lowered = [k.lower() for k in keys]
    if any(k in _CONTENT_KEYS for k in lowered) or (
        _contains_any(lowered, _CONTENT_KEYS) and _contains_any(lowered, _MESSAGE_HINTS)
    ):
        return "messages"
    if _contains_any(lowered, _USER_KEYS):
        return "users"
    if _contains_any(lowered, _CHANNEL_KEYS):
        return "channels"
    return None


def map_fields(keys: Iterable[str], kind: DatasetKind) -> dict[str, str]:
    """Map canonical field names to actual keys for a dataset of ``kind``."""
    actual = list(keys)
    by_lower = {k.lower(): k for k in actual}
    claimed: set[str] = set()
    mapping: dict[str, str] = {}
    fields = FIELD_ALIASES[kind]

    for field, aliases in fields:
        for alias in aliases:
            key = by_lower.get(alias)
            if key is not None and key not in claimed:
                mapping[field] = key
                claimed.add(key)
                break

    for field, aliases in fields:
        if field in mapping:
            continue
        match = _fuzzy_match(actual, aliases, claimed)
        if match is not None:
            mapping[field] = match
            claimed.add(match)

    return mapping


def _fuzzy_match(keys: list[str], aliases: tuple[str, ...], claimed: set[str]) -> str | None:
    for alias in aliases:
        if len(alias) < _MIN_FUZZY_LEN:
            continue
        for key in keys:
            if key not in claimed and alias in key.lower():
                return key
    return None
