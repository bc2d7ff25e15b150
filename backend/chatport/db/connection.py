"""aiosqlite connection for the workspace store and the import run log."""

from pathlib import Path
from typing import Any

import aiosqlite

from chatport.db.schema import SCHEMA_SQL

MEMORY = ":memory:"

# Imports write in long bursts; readers polling run status must not block them.
_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA synchronous=NORMAL",
)


class Database:
    """One shared connection. Every write commits immediately."""

    def __init__(self, connection: aiosqlite.Connection, path: str) -> None:
        self._conn = connection
        self.path = path

    @classmethod
    async def connect(cls, path: str = "chatport.db") -> "Database":
        """Open ``path`` (creating its directory) and ensure the schema exists."""
        if path != MEMORY:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        for pragma in _PRAGMAS:
            await conn.execute(pragma)
        await conn.executescript(SCHEMA_SQL)
        await conn.commit()
        return cls(conn, path)

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Run one write statement, commit, return the affected row count."""
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor.rowcount

    async def executemany(self, sql: str, rows: list[tuple]) -> None:
        if not rows:
            return
        await self._conn.executemany(sql, rows)
        await self._conn.commit()

    async def fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        async with self._conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def scalar(self, sql: str, params: tuple = ()) -> Any:
        """First column of the first row, or None."""
        row = await self.fetchone(sql, params)
        return row[0] if row is not None else None

    async def close(self) -> None:
        await self._conn.close()
