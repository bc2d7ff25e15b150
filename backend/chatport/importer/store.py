"""Persistence for import run summaries."""

import json
from datetime import datetime

from chatport.db.connection import Database
from chatport.importer.schemas import ImportProgress, ImportRunResponse, ImportStatistics


class ImportRunStore:
    """Upserts one row per run; read back for status and history."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(self, run: ImportRunResponse) -> None:
        await self._db.execute(
            """
            INSERT INTO import_runs
                (run_id, platform, filename, status, progress, stats, started_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET
                status = excluded.status,
                progress = excluded.progress,
                stats = excluded.stats,
                finished_at = excluded.finished_at
            """,
            (
                run.run_id,
                run.platform,
                run.filename,
                run.status,
                run.progress.model_dump_json(),
                run.stats.model_dump_json(),
                run.started_at.isoformat(),
                run.finished_at.isoformat() if run.finished_at else None,
            ),
        )

    async def get(self, run_id: str) -> ImportRunResponse | None:
        row = await self._db.fetchone("SELECT * FROM import_runs WHERE run_id = ?", (run_id,))
        return self._row_to_run(row) if row else None

    async def list_runs(self, limit: int = 50) -> list[ImportRunResponse]:
        rows = await self._db.fetchall(
            "SELECT * FROM import_runs ORDER BY started_at DESC LIMIT ?", (limit,)
        )
        return [self._row_to_run(row) for row in rows]

    @staticmethod
    def _row_to_run(row) -> ImportRunResponse:
        return ImportRunResponse(
            run_id=row["run_id"],
            platform=row["platform"],
            filename=row["filename"],
            status=row["status"],
            progress=ImportProgress.model_validate(json.loads(row["progress"])),
            stats=ImportStatistics.model_validate(json.loads(row["stats"])),
            started_at=datetime.fromisoformat(row["started_at"]),
            finished_at=(
                datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None
            ),
        )
