"""Parser for DiscordChatExporter JSON exports.

One export file covers one channel: ``guild`` and ``channel`` headers plus a
``messages`` array. Several exports (a list of export objects) are merged into
a single NormalizedExport. Discord exports have no user roster, so users are
derived from message authors and mention lists.
"""

import mimetypes
from typing import Any

from chatport.importer.errors import ExportValidationError
from chatport.importer.models import (
    NormalizedAttachment,
    NormalizedChannel,
    NormalizedEmbed,
    NormalizedMessage,
    NormalizedReaction,
    NormalizedUser,
)
from chatport.importer.parsers.base import SourceAdapter, UserRoster
from chatport.utils.values import as_int, as_str, parse_timestamp

_CONTENT_TYPES = {"Default", "Reply"}
_PRIVATE_CHANNEL_TYPES = {"DirectTextChat", "DirectGroupTextChat", "PrivateThread"}
_DELETED_USER_NAME = "Deleted User"


def _exports(payload: Any) -> list[dict]:
    return payload if isinstance(payload, list) else [payload]


def _to_user(author: dict) -> NormalizedUser | None:
    source_id = as_str(author.get("id"))
    if source_id is None:
        return None
    name = author.get("name") or source_id
    discriminator = author.get("discriminator")
    return NormalizedUser(
        source_id=source_id,
        handle=name,
        display_name=author.get("nickname") or name,
        avatar_url=author.get("avatarUrl"),
        is_bot=bool(author.get("isBot")),
        is_deleted=name == _DELETED_USER_NAME,
        metadata={
            k: v
            for k, v in (("discriminator", discriminator), ("color", author.get("color")))
            if v
        },
    )


def _to_reaction(raw: dict) -> NormalizedReaction:
    emoji = raw.get("emoji") or {}
    users = raw.get("users") or []
    return NormalizedReaction(
        emoji=emoji.get("name") or emoji.get("code") or "?",
        user_ids=[uid for uid in (as_str(u.get("id")) for u in users) if uid],
        count=as_int(raw.get("count"), default=len(users)),
    )


def _to_attachment(raw: dict) -> NormalizedAttachment:
    filename = raw.get("fileName") or "attachment"
    return NormalizedAttachment(
        source_id=str(raw.get("id") or filename),
        url=raw.get("url", ""),
        filename=filename,
        mime_type=mimetypes.guess_type(filename)[0],
        size_bytes=as_int(raw.get("fileSizeBytes")),
    )


def _collapse_reply_chains(messages: list[NormalizedMessage]) -> None:
    """Point replies-to-replies at the top of their chain.

    Threads are one level deep: the parent of every reply must be a root
    message. Chains are followed only through messages present in the export;
    a reference to a missing message is left as is.
    """
    parents = {m.source_id: m.thread_parent_id for m in messages}
    for msg in messages:
        parent = msg.thread_parent_id
        seen = {msg.source_id}
        while parent is not None and parents.get(parent) is not None and parent not in seen:
            seen.add(parent)
            parent = parents[parent]
        msg.thread_parent_id = parent


class DiscordAdapter(SourceAdapter):
    platform = "discord"

    def validate(self, payload: Any) -> None:
        exports = _exports(payload)
        if not exports:
            raise ExportValidationError("Empty Discord export list")
        for i, export in enumerate(exports):
            if not isinstance(export, dict):
                raise ExportValidationError(f"Discord export #{i} is not an object")
            if "guild" not in export and "channel" not in export:
                raise ExportValidationError(
                    "Not a Discord export: missing both 'guild' and 'channel'"
                )
            if not isinstance(export.get("messages", []), list):
                raise ExportValidationError("Discord export 'messages' must be an array")

    def extract_users(self, payload: Any) -> list[NormalizedUser]:
        roster = UserRoster()
        for export in _exports(payload):
            for msg in export.get("messages", []):
                for person in [msg.get("author") or {}, *(msg.get("mentions") or [])]:
                    user = _to_user(person)
                    if user is not None:
                        roster.add(user)
        return roster.to_list()

    def extract_channels(self, payload: Any) -> list[NormalizedChannel]:
        channels: dict[str, NormalizedChannel] = {}
        for export in _exports(payload):
            raw = export.get("channel") or {}
            source_id = as_str(raw.get("id"))
            if source_id is None:
                continue
            channel = channels.get(source_id)
            if channel is None:
                channel = NormalizedChannel(
                    source_id=source_id,
                    name=raw.get("name") or source_id,
                    description=raw.get("topic") or "",
                    is_private=raw.get("type") in _PRIVATE_CHANNEL_TYPES,
                )
                channels[source_id] = channel
            for msg in export.get("messages", []):
                author_id = as_str((msg.get("author") or {}).get("id"))
                if author_id and author_id not in channel.member_ids:
                    channel.member_ids.append(author_id)
        return list(channels.values())

    def extract_messages(self, payload: Any) -> list[NormalizedMessage]:
        messages: list[NormalizedMessage] = []
        seen: set[str] = set()
        for export in _exports(payload):
            channel_id = as_str((export.get("channel") or {}).get("id"))
            for msg in export.get("messages", []):
                source_id = str(msg.get("id"))
                # Overlapping exports of one channel repeat messages; first wins.
                if source_id in seen:
                    continue
                seen.add(source_id)
                msg_type = msg.get("type", "Default")
                reference = msg.get("reference") or {}
                parent_id = as_str(reference.get("messageId")) if msg_type == "Reply" else None
                messages.append(NormalizedMessage(
                    source_id=source_id,
                    author_id=as_str((msg.get("author") or {}).get("id")),
                    channel_id=channel_id,
                    body=msg.get("content", ""),
                    timestamp=parse_timestamp(msg.get("timestamp")),
                    thread_parent_id=parent_id,
                    embeds=[
                        NormalizedEmbed(
                            title=e.get("title"),
                            description=e.get("description"),
                            url=e.get("url"),
                        )
                        for e in msg.get("embeds") or []
                    ],
                    attachments=[_to_attachment(a) for a in msg.get("attachments") or []],
                    reactions=[_to_reaction(r) for r in msg.get("reactions") or []],
                    pinned=bool(msg.get("isPinned")),
                    is_system=msg_type not in _CONTENT_TYPES,
                ))
        _collapse_reply_chains(messages)
        return messages

    def collect_warnings(self, payload, export) -> list[str]:
        warnings = []
        exports = _exports(payload)
        if len(exports) > 1:
            warnings.append(f"Merged {len(exports)} Discord channel exports")
        anonymous = sum(
            1 for m in export.messages for r in m.reactions if r.count and not r.user_ids
        )
        if anonymous:
            warnings.append(
                f"{anonymous} reactions have no reactor list and cannot be attributed"
            )
        return warnings
