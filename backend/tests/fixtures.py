"""Shared test helpers: export builders and a recording gateway double."""

import io
import json
import zipfile
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from chatport.gateway.base import PersistenceGateway
from chatport.gateway.errors import EntityExistsError, GatewayError, TransientGatewayError
from chatport.importer.models import (
    NormalizedAttachment,
    NormalizedChannel,
    NormalizedExport,
    NormalizedMessage,
    NormalizedReaction,
    NormalizedUser,
)

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Normalized export builders
# ---------------------------------------------------------------------------


def make_user(source_id: str, **overrides: Any) -> NormalizedUser:
    fields = {"handle": source_id, "display_name": source_id.title(), "email": f"{source_id}@example.com"}
    fields.update(overrides)
    return NormalizedUser(source_id=source_id, **fields)


def make_channel(source_id: str, name: str | None = None, **overrides: Any) -> NormalizedChannel:
    return NormalizedChannel(source_id=source_id, name=name or source_id, **overrides)


def make_message(
    source_id: str,
    author_id: str | None = "alice",
    channel_id: str | None = "c1",
    body: str | None = "hello",
    minutes: int = 0,
    **overrides: Any,
) -> NormalizedMessage:
    return NormalizedMessage(
        source_id=source_id,
        author_id=author_id,
        channel_id=channel_id,
        body=body,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        **overrides,
    )


def make_export(
    users: list[NormalizedUser] | None = None,
    channels: list[NormalizedChannel] | None = None,
    messages: list[NormalizedMessage] | None = None,
    platform: str = "generic",
) -> NormalizedExport:
    return NormalizedExport(
        platform=platform,
        users=users if users is not None else [make_user("alice"), make_user("bob")],
        channels=channels if channels is not None else [make_channel("c1", "general")],
        messages=messages if messages is not None else [],
    )


def attachment(name: str = "photo.png", size: int = 1024) -> NormalizedAttachment:
    return NormalizedAttachment(
        source_id=name, url=f"https://files.example.com/{name}", filename=name,
        mime_type="image/png", size_bytes=size,
    )


def reaction(emoji: str, *user_ids: str, count: int | None = None) -> NormalizedReaction:
    return NormalizedReaction(
        emoji=emoji, user_ids=list(user_ids), count=count if count is not None else len(user_ids)
    )


# ---------------------------------------------------------------------------
# Discord export builders (DiscordChatExporter JSON)
# ---------------------------------------------------------------------------


def discord_author(user_id: str, name: str, *, is_bot: bool = False, nickname: str | None = None) -> dict:
    return {
        "id": user_id,
        "name": name,
        "discriminator": "0000",
        "nickname": nickname or name,
        "color": None,
        "isBot": is_bot,
        "avatarUrl": f"https://cdn.discordapp.com/avatars/{user_id}.png",
    }


def discord_message(
    message_id: str,
    author: dict,
    content: str = "hi",
    *,
    msg_type: str = "Default",
    reply_to: str | None = None,
    timestamp: str = "2024-03-01T12:00:00+00:00",
    **extra: Any,
) -> dict:
    msg = {
        "id": message_id,
        "type": "Reply" if reply_to else msg_type,
        "timestamp": timestamp,
        "timestampEdited": None,
        "isPinned": False,
        "content": content,
        "author": author,
        "attachments": [],
        "embeds": [],
        "stickers": [],
        "reactions": [],
        "mentions": [],
    }
    if reply_to:
        msg["reference"] = {"messageId": reply_to, "channelId": "chan-1", "guildId": "g1"}
    msg.update(extra)
    return msg


def make_discord_export(
    messages: list[dict],
    channel_id: str = "chan-1",
    channel_name: str = "general",
    topic: str | None = "General chat",
) -> dict:
    return {
        "guild": {"id": "g1", "name": "Test Guild", "iconUrl": None},
        "channel": {
            "id": channel_id,
            "type": "GuildTextChat",
            "categoryId": "cat-1",
            "category": "Text Channels",
            "name": channel_name,
            "topic": topic,
        },
        "dateRange": {"after": None, "before": None},
        "messages": messages,
        "messageCount": len(messages),
    }


# ---------------------------------------------------------------------------
# Slack export builders
# ---------------------------------------------------------------------------


def slack_user(user_id: str, name: str, **overrides: Any) -> dict:
    user = {
        "id": user_id,
        "team_id": "T1",
        "name": name,
        "deleted": False,
        "real_name": name.title(),
        "is_bot": False,
        "profile": {
            "display_name": name.title(),
            "real_name": name.title(),
            "email": f"{name}@example.com",
            "image_512": f"https://avatars.slack-edge.com/{user_id}.png",
        },
    }
    user.update(overrides)
    return user


def slack_channel(channel_id: str, name: str, members: list[str], **overrides: Any) -> dict:
    channel = {
        "id": channel_id,
        "name": name,
        "created": 1700000000,
        "creator": members[0] if members else None,
        "is_archived": False,
        "is_general": name == "general",
        "members": members,
        "topic": {"value": ""},
        "purpose": {"value": f"All about {name}"},
    }
    channel.update(overrides)
    return channel


def slack_message(user: str, text: str, ts: str, **extra: Any) -> dict:
    msg = {"type": "message", "user": user, "text": text, "ts": ts}
    msg.update(extra)
    return msg


THREAD_TS = "1709294400.000100"


def make_slack_export() -> dict:
    """Two users plus a bot, two public channels, one private group.

    #general holds a thread root with one reply, a reply whose root is missing
    from the export and a join notice. #random has a file and a link unfurl.
    """
    return {
        "users": [
            slack_user("U1", "alice"),
            slack_user("U2", "bob"),
            slack_user("U3", "deploybot", is_bot=True),
        ],
        "channels": [
            slack_channel("C1", "general", ["U1", "U2"]),
            slack_channel("C2", "random", ["U1"]),
        ],
        "groups": [
            slack_channel("G1", "secret", ["U1", "U2"], is_general=False),
        ],
        "messages": {
            "general": [
                {
                    "type": "message", "subtype": "channel_join", "user": "U2",
                    "text": "<@U2> has joined the channel", "ts": "1709294300.000050",
                },
                slack_message("U1", "Kicking off a thread", THREAD_TS, thread_ts=THREAD_TS, reply_count=1),
                slack_message(
                    "U2", "Reply in thread", "1709294460.000200", thread_ts=THREAD_TS,
                    reactions=[{"name": "tada", "users": ["U1"], "count": 1}],
                ),
                slack_message("U2", "Reply to a lost thread", "1709294520.000300",
                              thread_ts="1709000000.000000"),
            ],
            "random": [
                slack_message(
                    "U1", "Check this out", "1709298000.000100",
                    files=[{
                        "id": "F1", "name": "report.pdf", "mimetype": "application/pdf",
                        "size": 4096, "url_private": "https://files.slack.com/F1/report.pdf",
                    }],
                    attachments=[{
                        "title": "Example", "text": "An example link",
                        "title_link": "https://example.com",
                    }],
                ),
            ],
            "secret": [
                slack_message("U1", "psst", "1709301600.000100", pinned_to=["G1"]),
            ],
        },
    }


def make_slack_zip(payload: dict) -> bytes:
    """Lay out a JSON-object Slack export as a real export archive."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for key in ("users", "channels", "groups", "dms", "mpims"):
            if key in payload:
                zf.writestr(f"{key}.json", json.dumps(payload[key]))
        for folder, messages in payload.get("messages", {}).items():
            by_day: dict[str, list[dict]] = {}
            for msg in messages:
                day = datetime.fromtimestamp(float(msg["ts"]), tz=UTC).date().isoformat()
                by_day.setdefault(day, []).append(msg)
            for day, day_messages in by_day.items():
                zf.writestr(f"{folder}/{day}.json", json.dumps(day_messages))
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Gateway double
# ---------------------------------------------------------------------------


class RecordingGateway(PersistenceGateway):
    """In-memory gateway that records calls and can inject failures.

    ``fail_on`` maps an entity kind ("user", "channel", "members", "message",
    "file", "reaction") to a predicate over the call's key argument (handle,
    channel name, content, filename, emoji); matching calls raise GatewayError.
    ``transient_failures`` makes the first N calls of a kind raise
    TransientGatewayError.
    """

    def __init__(self, fail_on: dict | None = None, transient_failures: dict | None = None) -> None:
        self.users: dict[str, dict] = {}
        self.channels: dict[str, dict] = {}
        self.members: dict[str, list[str]] = {}
        self.messages: dict[str, dict] = {}
        self.reactions: list[tuple[str, str, str]] = []
        self.files: list[dict] = []
        self.calls: list[tuple[str, str]] = []
        self._fail_on = fail_on or {}
        self._transient = dict(transient_failures or {})

    def _check(self, kind: str, key: str) -> None:
        self.calls.append((kind, key))
        if self._transient.get(kind, 0) > 0:
            self._transient[kind] -= 1
            raise TransientGatewayError(f"{kind} temporarily unavailable")
        predicate = self._fail_on.get(kind)
        if predicate is not None and predicate(key):
            raise GatewayError(f"{kind} {key!r} rejected")

    def _new_id(self, store: dict, preferred_id: str | None, overwrite: bool, kind: str) -> str:
        if preferred_id is None:
            return str(uuid4())
        if preferred_id in store and not overwrite:
            raise EntityExistsError(kind, preferred_id)
        return preferred_id

    async def create_user(self, email, handle, display_name, avatar_url, metadata, *,
                          preferred_id=None, overwrite=False) -> str:
        self._check("user", handle)
        user_id = self._new_id(self.users, preferred_id, overwrite, "user")
        self.users[user_id] = {
            "email": email, "handle": handle, "display_name": display_name,
            "avatar_url": avatar_url, "metadata": metadata,
        }
        return user_id

    async def create_channel(self, name, description, is_private, creator_id, metadata, *,
                             preferred_id=None, overwrite=False) -> str:
        self._check("channel", name)
        channel_id = self._new_id(self.channels, preferred_id, overwrite, "channel")
        self.channels[channel_id] = {
            "name": name, "description": description, "is_private": is_private,
            "creator_id": creator_id, "metadata": metadata,
        }
        return channel_id

    async def add_channel_members(self, channel_id, member_ids) -> None:
        self._check("members", self.channels[channel_id]["name"])
        self.members.setdefault(channel_id, []).extend(member_ids)

    async def create_message(self, content, author_id, channel_id, parent_message_id, created_at,
                             metadata, *, preferred_id=None, overwrite=False) -> str:
        self._check("message", content)
        message_id = self._new_id(self.messages, preferred_id, overwrite, "message")
        self.messages[message_id] = {
            "content": content, "author_id": author_id, "channel_id": channel_id,
            "parent_message_id": parent_message_id, "created_at": created_at, "metadata": metadata,
        }
        return message_id

    async def create_reaction(self, message_id, user_id, emoji) -> None:
        self._check("reaction", emoji)
        self.reactions.append((message_id, user_id, emoji))

    async def create_file(self, message_id, source_url, filename, mime_type, size_bytes) -> str:
        self._check("file", filename)
        file_id = str(uuid4())
        self.files.append({
            "file_id": file_id, "message_id": message_id, "source_url": source_url,
            "filename": filename, "mime_type": mime_type, "size_bytes": size_bytes,
        })
        return file_id

    def message_by_source(self, source_id: str) -> dict | None:
        for msg in self.messages.values():
            if msg["metadata"]["imported_id"] == source_id:
                return msg
        return None
