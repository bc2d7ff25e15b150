"""SQLite-backed persistence gateway."""

import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import aiosqlite

from chatport.db.connection import Database
from chatport.gateway.base import PersistenceGateway
from chatport.gateway.errors import EntityExistsError, GatewayError
from chatport.utils.json import load_metadata

logger = logging.getLogger(__name__)

_TABLES = {
    "user": ("users", "user_id"),
    "channel": ("channels", "channel_id"),
    "message": ("messages", "message_id"),
    "file": ("files", "file_id"),
}


class SqliteGateway(PersistenceGateway):
    """Writes imported entities into the local SQLite database."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # PersistenceGateway
    # ------------------------------------------------------------------

    async def create_user(
        self,
        email: str | None,
        handle: str,
        display_name: str,
        avatar_url: str | None,
        metadata: dict[str, Any],
        *,
        preferred_id: str | None = None,
        overwrite: bool = False,
    ) -> str:
        return await self._insert(
            "user",
            preferred_id,
            overwrite,
            ("email", "handle", "display_name", "avatar_url", "metadata", "created_at"),
            (email, handle, display_name, avatar_url, json.dumps(metadata), _now()),
        )

    async def create_channel(
        self,
        name: str,
        description: str,
        is_private: bool,
        creator_id: str | None,
        metadata: dict[str, Any],
        *,
        preferred_id: str | None = None,
        overwrite: bool = False,
    ) -> str:
        return await self._insert(
            "channel",
            preferred_id,
            overwrite,
            ("name", "description", "is_private", "creator_id", "metadata", "created_at"),
            (name, description, int(is_private), creator_id, json.dumps(metadata), _now()),
        )

    async def add_channel_members(self, channel_id: str, member_ids: list[str]) -> None:
        await self._db.executemany(
            "INSERT OR IGNORE INTO channel_members (channel_id, user_id) VALUES (?, ?)",
            [(channel_id, user_id) for user_id in member_ids],
        )

    async def create_message(
        self,
        content: str,
        author_id: str,
        channel_id: str,
        parent_message_id: str | None,
        created_at: datetime | None,
        metadata: dict[str, Any],
        *,
        preferred_id: str | None = None,
        overwrite: bool = False,
    ) -> str:
        timestamp = created_at.isoformat() if created_at else _now()
        return await self._insert(
            "message",
            preferred_id,
            overwrite,
            ("channel_id", "author_id", "parent_message_id", "content", "metadata", "created_at"),
            (channel_id, author_id, parent_message_id, content, json.dumps(metadata), timestamp),
        )

    async def create_reaction(self, message_id: str, user_id: str, emoji: str) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO reactions (message_id, user_id, emoji) VALUES (?, ?, ?)",
            (message_id, user_id, emoji),
        )

    async def create_file(
        self,
        message_id: str,
        source_url: str,
        filename: str,
        mime_type: str | None,
        size_bytes: int,
    ) -> str:
        return await self._insert(
            "file",
            None,
            False,
            ("message_id", "source_url", "filename", "mime_type", "size_bytes"),
            (message_id, source_url, filename, mime_type, size_bytes),
        )

    # ------------------------------------------------------------------
    # Read side (used by the API and tests)
    # ------------------------------------------------------------------

    async def count(self, entity: str) -> int:
        table = "reactions" if entity == "reaction" else _TABLES[entity][0]
        return await self._db.scalar(f"SELECT COUNT(*) FROM {table}")

    async def get_user(self, user_id: str) -> dict | None:
        row = await self._db.fetchone("SELECT * FROM users WHERE user_id = ?", (user_id,))
        return _row_to_dict(row) if row else None

    async def list_users(self) -> list[dict]:
        rows = await self._db.fetchall("SELECT * FROM users ORDER BY created_at, rowid")
        return [_row_to_dict(r) for r in rows]

    async def list_channels(self) -> list[dict]:
        rows = await self._db.fetchall("SELECT * FROM channels ORDER BY created_at, rowid")
        return [_row_to_dict(r) for r in rows]

    async def get_channel_members(self, channel_id: str) -> list[str]:
        rows = await self._db.fetchall(
            "SELECT user_id FROM channel_members WHERE channel_id = ? ORDER BY rowid",
            (channel_id,),
        )
        return [r["user_id"] for r in rows]

    async def list_messages(self, channel_id: str | None = None) -> list[dict]:
        if channel_id is None:
            rows = await self._db.fetchall("SELECT * FROM messages ORDER BY rowid")
        else:
            rows = await self._db.fetchall(
                "SELECT * FROM messages WHERE channel_id = ? ORDER BY rowid", (channel_id,)
            )
        return [_row_to_dict(r) for r in rows]

    async def list_reactions(self, message_id: str) -> list[dict]:
        rows = await self._db.fetchall(
            "SELECT * FROM reactions WHERE message_id = ? ORDER BY rowid", (message_id,)
        )
        return [dict(r) for r in rows]

    async def list_files(self, message_id: str | None = None) -> list[dict]:
        if message_id is None:
            rows = await self._db.fetchall("SELECT * FROM files ORDER BY rowid")
        else:
            rows = await self._db.fetchall(
                "SELECT * FROM files WHERE message_id = ? ORDER BY rowid", (message_id,)
            )
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _insert(
        self,
        entity: str,
        preferred_id: str | None,
        overwrite: bool,
        columns: tuple[str, ...],
        values: tuple,
    ) -> str:
        table, id_column = _TABLES[entity]
        entity_id = preferred_id or str(uuid4())
        verb = "INSERT"
        if preferred_id is not None:
            exists = await self._db.scalar(
                f"SELECT COUNT(*) FROM {table} WHERE {id_column} = ?", (preferred_id,)
            )
            if exists:
                if not overwrite:
                    raise EntityExistsError(entity, preferred_id)
                verb = "INSERT OR REPLACE"
                logger.debug("Overwriting %s %s", entity, preferred_id)

        placeholders = ", ".join("?" for _ in range(len(columns) + 1))
        sql = f"{verb} INTO {table} ({id_column}, {', '.join(columns)}) VALUES ({placeholders})"
        try:
            await self._db.execute(sql, (entity_id, *values))
        except aiosqlite.IntegrityError as e:
            raise GatewayError(f"Could not create {entity}: {e}") from e
        return entity_id


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _row_to_dict(row: aiosqlite.Row) -> dict:
    d = dict(row)
    if "metadata" in d:
        d["metadata"] = load_metadata(d["metadata"])
    if "is_private" in d:
        d["is_private"] = bool(d["is_private"])
    return d
