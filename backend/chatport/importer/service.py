"""ImportService: detects and parses export files, runs and tracks imports."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from chatport.gateway.base import PersistenceGateway
from chatport.importer.errors import RunFinishedError, RunNotFoundError
from chatport.importer.models import NormalizedExport
from chatport.importer.parsers.detection import detect_format, get_adapter
from chatport.importer.pipeline import ImportPipeline
from chatport.importer.schemas import (
    ImportConfig,
    ImportPreviewResponse,
    ImportProgress,
    ImportResult,
    ImportRunResponse,
    ImportStartedResponse,
)
from chatport.importer.store import ImportRunStore

logger = logging.getLogger(__name__)

# Rough per-item costs used for the preview's duration estimate (seconds).
_BASE_SECONDS = 5.0
_PER_USER = 0.05
_PER_CHANNEL = 0.1
_PER_MESSAGE = 0.02
_PER_ATTACHMENT = 0.5


@dataclass
class _ActiveRun:
    run_id: str
    platform: str
    filename: str | None
    pipeline: ImportPipeline
    started_at: datetime
    task: asyncio.Task | None = None
    latest: ImportProgress | None = None

    def snapshot(self) -> ImportRunResponse:
        progress = self.latest or self.pipeline.progress
        return ImportRunResponse(
            run_id=self.run_id,
            platform=self.platform,
            filename=self.filename,
            status=progress.status,
            progress=progress,
            stats=self.pipeline.stats,
            started_at=self.started_at,
        )


class ImportService:
    def __init__(self, gateway: PersistenceGateway, store: ImportRunStore) -> None:
        self._gateway = gateway
        self._store = store
        self._active: dict[str, _ActiveRun] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(
        self, content: bytes, filename: str | None = None, format_hint: str | None = None
    ) -> NormalizedExport:
        """Detect the format and parse. Raises ExportValidationError."""
        fmt = format_hint or detect_format(content, filename)
        return get_adapter(fmt).parse(content)

    async def preview(
        self, content: bytes, filename: str | None = None, format_hint: str | None = None
    ) -> ImportPreviewResponse:
        """Parse file and return preview without creating anything."""
        export = self.parse(content, filename, format_hint)
        attachments = export.attachment_count()
        return ImportPreviewResponse(
            format_detected=export.platform,
            user_count=len(export.users),
            bot_count=sum(1 for u in export.users if u.is_bot),
            channel_count=len(export.channels),
            channel_names=[c.name for c in export.channels],
            message_count=len(export.messages),
            thread_reply_count=sum(1 for m in export.messages if m.is_reply),
            reaction_count=sum(len(r.user_ids) or r.count for m in export.messages for r in m.reactions),
            attachment_count=attachments,
            estimated_seconds=round(
                _BASE_SECONDS
                + len(export.users) * _PER_USER
                + len(export.channels) * _PER_CHANNEL
                + len(export.messages) * _PER_MESSAGE
                + attachments * _PER_ATTACHMENT,
                1,
            ),
            warnings=export.warnings,
        )

    async def start(
        self,
        content: bytes,
        filename: str | None = None,
        config: ImportConfig | None = None,
        *,
        format_hint: str | None = None,
    ) -> ImportStartedResponse:
        """Parse synchronously, then run the import as a background task."""
        export = self.parse(content, filename, format_hint)
        run = _ActiveRun(
            run_id=str(uuid4()),
            platform=export.platform,
            filename=filename,
            pipeline=ImportPipeline(self._gateway),
            started_at=datetime.now(UTC),
            latest=ImportProgress(status="importing"),
        )
        self._active[run.run_id] = run
        await self._store.save(run.snapshot())
        run.task = asyncio.create_task(self._execute(run, export, config or ImportConfig()))
        logger.info("Started import run %s (%s, %s)", run.run_id, run.platform, filename)
        return ImportStartedResponse(run_id=run.run_id, platform=run.platform, status="importing")

    async def run(
        self,
        content: bytes,
        filename: str | None = None,
        config: ImportConfig | None = None,
        *,
        format_hint: str | None = None,
    ) -> ImportResult:
        """Parse and import inline, returning the final result."""
        export = self.parse(content, filename, format_hint)
        return await ImportPipeline(self._gateway).run(export, config or ImportConfig())

    async def wait(self, run_id: str) -> ImportRunResponse:
        """Wait for a run to reach a terminal state and return its summary."""
        run = self._active.get(run_id)
        if run is not None and run.task is not None:
            await asyncio.shield(run.task)
        result = await self._store.get(run_id)
        if result is None:
            raise RunNotFoundError(run_id)
        return result

    async def cancel(self, run_id: str) -> None:
        """Request cancellation of an active run.

        Raises RunFinishedError for runs that already ended and
        RunNotFoundError for unknown ids.
        """
        run = self._active.get(run_id)
        if run is None or (run.task is not None and run.task.done()):
            if await self._store.get(run_id) is not None:
                raise RunFinishedError(run_id)
            raise RunNotFoundError(run_id)
        run.pipeline.cancel()
        logger.info("Cancellation requested for import run %s", run_id)

    async def get(self, run_id: str) -> ImportRunResponse | None:
        run = self._active.get(run_id)
        if run is not None:
            return run.snapshot()
        return await self._store.get(run_id)

    async def list_runs(self, limit: int = 50) -> list[ImportRunResponse]:
        return await self._store.list_runs(limit)

    async def shutdown(self) -> None:
        """Cancel all active runs and wait for them to stop."""
        tasks = []
        for run in list(self._active.values()):
            run.pipeline.cancel()
            if run.task is not None:
                tasks.append(run.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _execute(self, run: _ActiveRun, export: NormalizedExport, config: ImportConfig) -> None:
        def on_progress(progress: ImportProgress) -> None:
            run.latest = progress

        try:
            result = await run.pipeline.run(export, config, on_progress)
            summary = run.snapshot()
            summary.status = result.progress.status
            summary.progress = result.progress
            summary.stats = result.stats
            summary.finished_at = datetime.now(UTC)
            logger.info("Import run %s finished: %s", run.run_id, result.progress.status)
            try:
                await self._store.save(summary)
            except Exception:
                logger.exception("Failed to record summary of import run %s", run.run_id)
        finally:
            self._active.pop(run.run_id, None)
