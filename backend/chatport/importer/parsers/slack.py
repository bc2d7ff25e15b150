"""Parser for Slack workspace exports.

Accepts the standard export zip (``users.json``, ``channels.json``,
``groups.json``, ``dms.json``, ``mpims.json`` and one folder of daily message
files per conversation) or the same content as one JSON object whose
``messages`` maps conversation folder names to message arrays.

Slack message timestamps (``ts``) are only unique within a conversation, so
message source ids are ``<channel_id>:<ts>``. A message whose ``thread_ts``
differs from its own ``ts`` is a reply to ``<channel_id>:<thread_ts>``.
"""

import io
import json
import zipfile
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

ZIP_MAGIC = b"PK\x03\x04"

_ROSTER_FILES = ("users", "channels", "groups", "dms", "mpims")
_PRIVATE_KINDS = ("groups", "dms", "mpims")

# Subtypes that still carry user-authored content; every other subtype is a
# system notice (joins, topic changes, pins).
_CONTENT_SUBTYPES = {None, "thread_broadcast", "file_share", "me_message", "bot_message"}

_SLACKBOT_ID = "USLACKBOT"


def load_slack_zip(content: bytes) -> dict[str, Any]:
    """Read a Slack export zip into the JSON-object form of the export."""
    payload: dict[str, Any] = {"messages": {}, "_warnings": []}
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise ExportValidationError(f"Invalid Slack export archive: {e}") from e

    with archive:
        names = sorted(n for n in archive.namelist() if n.endswith(".json"))
        for name in names:
            parts = name.strip("/").split("/")
            try:
                data = json.loads(archive.read(name).decode("utf-8-sig"))
            except (ValueError, UnicodeDecodeError):
                payload["_warnings"].append(f"Skipped unreadable file {name}")
                continue
            stem = parts[-1][:-5]
            # Export zips sometimes nest everything under one top folder.
            if len(parts) <= 2 and stem in _ROSTER_FILES:
                payload[stem] = data
            elif len(parts) >= 2 and isinstance(data, list):
                payload["messages"].setdefault(parts[-2], []).extend(data)
    return payload


def _to_user(raw: dict) -> NormalizedUser | None:
    source_id = as_str(raw.get("id"))
    if source_id is None:
        return None
    profile = raw.get("profile") or {}
    handle = raw.get("name") or source_id
    return NormalizedUser(
        source_id=source_id,
        handle=handle,
        display_name=(
            profile.get("display_name") or profile.get("real_name") or raw.get("real_name")
            or handle
        ),
        email=profile.get("email"),
        avatar_url=profile.get("image_512") or profile.get("image_192") or profile.get("image_72"),
        is_bot=bool(raw.get("is_bot") or raw.get("is_app_user")) or source_id == _SLACKBOT_ID,
        is_deleted=bool(raw.get("deleted")),
        metadata={k: raw[k] for k in ("tz", "team_id") if raw.get(k)},
    )


def _to_channel(raw: dict, private: bool) -> NormalizedChannel | None:
    source_id = as_str(raw.get("id"))
    if source_id is None:
        return None
    purpose = (raw.get("purpose") or {}).get("value") or ""
    topic = (raw.get("topic") or {}).get("value") or ""
    members = raw.get("members") or []
    if not members and raw.get("user"):
        members = [raw["user"]]  # 1:1 DM entries list only the other party
    return NormalizedChannel(
        source_id=source_id,
        name=raw.get("name") or source_id,
        description=purpose or topic,
        is_private=private or bool(raw.get("is_private")),
        creator_id=as_str(raw.get("creator")),
        member_ids=[str(m) for m in members],
        archived=bool(raw.get("is_archived")),
    )


def _to_embed(raw: dict) -> NormalizedEmbed:
    return NormalizedEmbed(
        title=raw.get("title"),
        description=raw.get("text") or raw.get("fallback"),
        url=raw.get("title_link") or raw.get("from_url"),
    )


def _to_attachment(raw: dict) -> NormalizedAttachment | None:
    url = raw.get("url_private") or raw.get("url_private_download") or raw.get("permalink")
    if not url:
        return None
    filename = raw.get("name") or raw.get("title") or "file"
    return NormalizedAttachment(
        source_id=str(raw.get("id") or filename),
        url=url,
        filename=filename,
        mime_type=raw.get("mimetype"),
        size_bytes=as_int(raw.get("size")),
    )


class SlackAdapter(SourceAdapter):
    platform = "slack"

    def load(self, raw: bytes | str | Any) -> Any:
        if isinstance(raw, bytes) and raw.startswith(ZIP_MAGIC):
            return load_slack_zip(raw)
        return super().load(raw)

    def validate(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ExportValidationError("Slack export must be a JSON object or zip archive")
        if "channels" not in payload and "users" not in payload:
            raise ExportValidationError(
                "Not a Slack export: missing both 'channels' and 'users'"
            )
        for key in _ROSTER_FILES:
            if key in payload and not isinstance(payload[key], list):
                raise ExportValidationError(f"Slack export '{key}' must be an array")
        if not isinstance(payload.get("messages", {}), dict):
            raise ExportValidationError(
                "Slack export 'messages' must map channel names to message arrays"
            )

    def extract_users(self, payload: dict) -> list[NormalizedUser]:
        roster = UserRoster()
        for raw in payload.get("users", []):
            user = _to_user(raw)
            if user is not None:
                roster.add(user)
        return roster.to_list()

    def extract_channels(self, payload: dict) -> list[NormalizedChannel]:
        channels: list[NormalizedChannel] = []
        seen: set[str] = set()
        for kind in ("channels", *_PRIVATE_KINDS):
            for raw in payload.get(kind, []):
                channel = _to_channel(raw, private=kind in _PRIVATE_KINDS)
                if channel is not None and channel.source_id not in seen:
                    seen.add(channel.source_id)
                    channels.append(channel)
        return channels

    def extract_messages(self, payload: dict) -> list[NormalizedMessage]:
        folder_to_channel: dict[str, str] = {}
        for channel in self.extract_channels(payload):
            folder_to_channel[channel.name] = channel.source_id
            folder_to_channel[channel.source_id] = channel.source_id

        messages: list[NormalizedMessage] = []
        for folder, raw_messages in payload.get("messages", {}).items():
            channel_id = folder_to_channel.get(folder, folder)
            for msg in raw_messages:
                ts = as_str(msg.get("ts"))
                if ts is None:
                    continue
                thread_ts = as_str(msg.get("thread_ts"))
                parent_id = (
                    f"{channel_id}:{thread_ts}" if thread_ts and thread_ts != ts else None
                )
                files = (_to_attachment(f) for f in msg.get("files") or [])
                messages.append(NormalizedMessage(
                    source_id=f"{channel_id}:{ts}",
                    author_id=as_str(msg.get("user")) or as_str(msg.get("bot_id")),
                    channel_id=channel_id,
                    body=msg.get("text", ""),
                    timestamp=parse_timestamp(ts),
                    thread_parent_id=parent_id,
                    embeds=[_to_embed(a) for a in msg.get("attachments") or []],
                    attachments=[f for f in files if f is not None],
                    reactions=[
                        NormalizedReaction(
                            emoji=r.get("name", "?"),
                            user_ids=[str(u) for u in r.get("users") or []],
                            count=as_int(r.get("count")),
                        )
                        for r in msg.get("reactions") or []
                    ],
                    pinned=bool(msg.get("pinned_to")),
                    is_system=msg.get("subtype") not in _CONTENT_SUBTYPES,
                ))
        return messages

    def collect_warnings(self, payload, export) -> list[str]:
        warnings = list(payload.get("_warnings", []))
        known = {c.source_id for c in export.channels}
        unknown = sorted({m.channel_id for m in export.messages if m.channel_id not in known})
        if unknown:
            warnings.append(
                f"Message folders without a channel entry: {', '.join(unknown)}"
            )
        return warnings
