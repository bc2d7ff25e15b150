"""Parser for generic CSV/JSON dumps.

Accepted shapes:
- a JSON object with any of ``users``, ``channels``, ``messages`` arrays;
- a JSON array of row objects, classified by schema sniffing;
- a CSV table with a header row, classified the same way.

Column names are mapped to canonical fields by ``sniffing.map_fields``. Rows
missing required fields are kept; the pipeline skips them at per-item
validation. References by name (channel names, author handles) are translated
to source ids here so that the pipeline only ever sees source ids.
"""

import csv
import io
import re
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
from chatport.importer.parsers.sniffing import DatasetKind, classify_dataset, map_fields
from chatport.utils.json import load_json_bytes
from chatport.utils.values import as_bool, as_int, as_list, as_str, parse_timestamp

DEFAULT_CHANNEL_ID = "imported"
_KINDS: tuple[DatasetKind, ...] = ("users", "channels", "messages")
_LIST_SPLIT = re.compile(r"[;,\s]+")


def read_csv_rows(text: str) -> list[dict[str, str]]:
    """Read a CSV table with a header row, sniffing the delimiter."""
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel
    reader = csv.DictReader(io.StringIO(text), dialect=dialect)
    return [
        {k.strip(): v for k, v in row.items() if k is not None}
        for row in reader
        if any((v or "").strip() for v in row.values() if isinstance(v, str))
    ]


def _row_keys(rows: list[dict]) -> list[str]:
    keys: dict[str, None] = {}
    for row in rows[:50]:
        for key in row:
            keys.setdefault(key, None)
    return list(keys)


def _split(value: Any) -> list[str]:
    if isinstance(value, str):
        return [s for s in _LIST_SPLIT.split(value) if s]
    return as_list(value)


def _pick(row: dict, mapping: dict[str, str], field: str) -> Any:
    key = mapping.get(field)
    return row.get(key) if key is not None else None


class GenericAdapter(SourceAdapter):
    platform = "generic"

    def load(self, raw: bytes | str | Any) -> Any:
        if not isinstance(raw, (bytes, str)):
            return raw
        try:
            return load_json_bytes(raw)
        except (ValueError, UnicodeDecodeError):
            pass
        try:
            text = raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw
        except UnicodeDecodeError as e:
            raise ExportValidationError(f"Export is neither JSON nor UTF-8 CSV: {e}") from e
        rows = read_csv_rows(text)
        if not rows:
            raise ExportValidationError("CSV export has no data rows")
        return rows

    def validate(self, payload: Any) -> None:
        self.datasets(payload)

    def datasets(self, payload: Any) -> dict[DatasetKind, list[dict]]:
        """Split the payload into row lists per entity type."""
        if isinstance(payload, dict):
            found = {
                kind: [r for r in payload[kind] if isinstance(r, dict)]
                for kind in _KINDS
                if isinstance(payload.get(kind), list)
            }
            if not found:
                raise ExportValidationError(
                    "Not a generic export: expected 'channels', 'users' or 'messages'"
                )
            return found
        if isinstance(payload, list):
            rows = [r for r in payload if isinstance(r, dict)]
            if not rows:
                raise ExportValidationError("Empty array, nothing to import")
            kind = classify_dataset(_row_keys(rows))
            if kind is None:
                raise ExportValidationError(
                    "Could not tell whether rows describe users, channels or messages"
                )
            return {kind: rows}
        raise ExportValidationError("Generic export must be a JSON object, array or CSV")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def extract_users(self, payload: Any) -> list[NormalizedUser]:
        data = self.datasets(payload)
        roster = UserRoster()
        if "users" in data:
            rows = data["users"]
            mapping = map_fields(_row_keys(rows), "users")
            used = set(mapping.values())
            for i, row in enumerate(rows):
                handle = as_str(_pick(row, mapping, "handle"))
                email = as_str(_pick(row, mapping, "email"))
                display = as_str(_pick(row, mapping, "display_name"))
                source_id = (
                    as_str(_pick(row, mapping, "id")) or handle or email or f"user-{i + 1}"
                )
                handle = handle or (email.split("@")[0] if email else None) or display or source_id
                roster.add(NormalizedUser(
                    source_id=source_id,
                    handle=handle,
                    display_name=display or handle,
                    email=email,
                    avatar_url=as_str(_pick(row, mapping, "avatar_url")),
                    is_bot=as_bool(_pick(row, mapping, "is_bot")),
                    is_deleted=as_bool(_pick(row, mapping, "is_deleted")),
                    metadata={k: v for k, v in row.items() if k not in used and v not in (None, "")},
                ))
            return roster.to_list()

        # No roster: derive users from message authors.
        rows = data.get("messages", [])
        mapping = map_fields(_row_keys(rows), "messages")
        for row in rows:
            author = as_str(_pick(row, mapping, "author"))
            if author:
                roster.add(NormalizedUser(source_id=author, handle=author, display_name=author))
        return roster.to_list()

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def extract_channels(self, payload: Any) -> list[NormalizedChannel]:
        data = self.datasets(payload)
        if "channels" in data:
            rows = data["channels"]
            mapping = map_fields(_row_keys(rows), "channels")
            channels: dict[str, NormalizedChannel] = {}
            for i, row in enumerate(rows):
                name = as_str(_pick(row, mapping, "name"))
                source_id = as_str(_pick(row, mapping, "id")) or name or f"channel-{i + 1}"
                if source_id in channels:
                    continue
                channels[source_id] = NormalizedChannel(
                    source_id=source_id,
                    name=(name or source_id).lstrip("#"),
                    description=as_str(_pick(row, mapping, "description")) or "",
                    is_private=as_bool(_pick(row, mapping, "is_private")),
                    creator_id=as_str(_pick(row, mapping, "creator")),
                    member_ids=_split(_pick(row, mapping, "members")),
                    archived=as_bool(_pick(row, mapping, "archived")),
                )
            return list(channels.values())

        # No roster: one channel per distinct message channel value.
        rows = data.get("messages", [])
        mapping = map_fields(_row_keys(rows), "messages")
        synthesized: dict[str, NormalizedChannel] = {}
        for row in rows:
            value = as_str(_pick(row, mapping, "channel"))
            source_id = value.lstrip("#") if value else DEFAULT_CHANNEL_ID
            channel = synthesized.get(source_id)
            if channel is None:
                channel = NormalizedChannel(source_id=source_id, name=source_id)
                synthesized[source_id] = channel
            author = as_str(_pick(row, mapping, "author"))
            if author and author not in channel.member_ids:
                channel.member_ids.append(author)
        return list(synthesized.values())

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def extract_messages(self, payload: Any) -> list[NormalizedMessage]:
        data = self.datasets(payload)
        rows = data.get("messages", [])
        if not rows:
            return []
        mapping = map_fields(_row_keys(rows), "messages")
        channel_ref = _reference_index(
            (c.source_id, [c.name]) for c in self.extract_channels(payload)
        )
        user_ref = _reference_index(
            (u.source_id, [u.handle, u.email]) for u in self.extract_users(payload)
        )
        single_channel = next(iter(channel_ref.values())) if len(set(channel_ref.values())) == 1 else None

        messages: list[NormalizedMessage] = []
        for i, row in enumerate(rows):
            channel_value = as_str(_pick(row, mapping, "channel"))
            if channel_value is None:
                channel_id = single_channel or DEFAULT_CHANNEL_ID
            else:
                channel_id = channel_ref.get(channel_value.lower().lstrip("#"), channel_value)
            author = as_str(_pick(row, mapping, "author"))
            if author is not None:
                author = user_ref.get(author.lower(), author)

            body: str | None = None
            if "content" in mapping and row.get(mapping["content"]) is not None:
                body = str(row[mapping["content"]])

            messages.append(NormalizedMessage(
                source_id=as_str(_pick(row, mapping, "id")) or f"msg-{i + 1}",
                author_id=author,
                channel_id=channel_id,
                body=body,
                timestamp=parse_timestamp(_pick(row, mapping, "timestamp")),
                thread_parent_id=as_str(_pick(row, mapping, "parent")),
                embeds=_embeds(_pick(row, mapping, "embeds")),
                attachments=_attachments(_pick(row, mapping, "attachments")),
                reactions=_reactions(_pick(row, mapping, "reactions")),
                pinned=as_bool(_pick(row, mapping, "pinned")),
                is_system=as_bool(_pick(row, mapping, "system")),
            ))
        return messages

    def collect_warnings(self, payload, export) -> list[str]:
        warnings = []
        data = self.datasets(payload)
        for kind, rows in data.items():
            mapping = map_fields(_row_keys(rows), kind)
            if kind == "messages":
                missing = [f for f in ("author", "content") if f not in mapping]
                if missing:
                    warnings.append(
                        f"Message rows have no column for: {', '.join(missing)}"
                    )
        if "channels" not in data and export.messages:
            warnings.append(f"Created {len(export.channels)} channel(s) from message rows")
        if "users" not in data and export.users:
            warnings.append(f"Created {len(export.users)} user(s) from message authors")
        return warnings


def _reference_index(entries) -> dict[str, str]:
    """Lowercased id/name/handle -> source id. Ids win over names."""
    by_name: dict[str, str] = {}
    by_id: dict[str, str] = {}
    for source_id, names in entries:
        by_id[source_id.lower()] = source_id
        for name in names:
            if name:
                by_name.setdefault(name.lower().lstrip("#"), source_id)
    return {**by_name, **by_id}


def _embeds(value: Any) -> list[NormalizedEmbed]:
    if not isinstance(value, list):
        return []
    return [
        NormalizedEmbed(
            title=e.get("title"),
            description=e.get("description") or e.get("text"),
            url=e.get("url") or e.get("link"),
        )
        for e in value
        if isinstance(e, dict)
    ]


def _attachments(value: Any) -> list[NormalizedAttachment]:
    if value is None or value == "":
        return []
    items = value if isinstance(value, list) else _split(value)
    attachments = []
    for i, item in enumerate(items):
        if isinstance(item, dict):
            url = as_str(item.get("url") or item.get("source_url"))
            if not url:
                continue
            filename = item.get("filename") or item.get("name") or url.rsplit("/", 1)[-1]
            attachments.append(NormalizedAttachment(
                source_id=str(item.get("id") or f"{i}:{filename}"),
                url=url,
                filename=filename,
                mime_type=item.get("mime_type") or item.get("mimetype"),
                size_bytes=as_int(item.get("size") or item.get("size_bytes")),
            ))
        elif as_str(item):
            url = str(item).strip()
            attachments.append(NormalizedAttachment(
                source_id=f"{i}:{url}", url=url, filename=url.rsplit("/", 1)[-1] or "file"
            ))
    return attachments


def _reactions(value: Any) -> list[NormalizedReaction]:
    if not isinstance(value, list):
        return []
    reactions = []
    for r in value:
        if not isinstance(r, dict) or not (r.get("emoji") or r.get("name")):
            continue
        users = as_list(r.get("users") or r.get("user_ids"))
        reactions.append(NormalizedReaction(
            emoji=str(r.get("emoji") or r.get("name")),
            user_ids=users,
            count=as_int(r.get("count"), default=len(users)),
        ))
    return reactions
