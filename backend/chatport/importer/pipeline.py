"""ImportPipeline: drives a NormalizedExport through the staged import.

Stage order is fixed: validate -> users -> channels -> messages (root pass)
-> messages (thread-reply pass) -> files -> finalize. Later stages only learn
internal ids through the run's IdMappingTable, so stages never overlap.

All mutable state of a run lives in one RunContext owned by one pipeline
instance. Independent runs use independent pipelines.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from chatport.gateway.base import PersistenceGateway
from chatport.gateway.errors import EntityExistsError, GatewayError, TransientGatewayError
from chatport.importer.errors import ExportValidationError, ItemSkipped
from chatport.importer.mapping import EntityType, IdMappingTable, ReferenceResolver
from chatport.importer.models import (
    NormalizedAttachment,
    NormalizedChannel,
    NormalizedEmbed,
    NormalizedExport,
    NormalizedMessage,
    NormalizedUser,
)
from chatport.importer.schemas import (
    EntityCounters,
    ErrorKind,
    ImportConfig,
    ImportErrorRecord,
    ImportProgress,
    ImportResult,
    ImportStatistics,
    ImportWarningRecord,
    WarningKind,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], Awaitable[None] | None]

EMBED_DELIMITER = "---"


@dataclass
class RunContext:
    """Everything one import run reads and writes."""

    export: NormalizedExport
    config: ImportConfig
    on_progress: ProgressCallback | None
    cancel_event: asyncio.Event
    progress: ImportProgress = field(default_factory=ImportProgress)
    stats: ImportStatistics = field(default_factory=ImportStatistics)
    mapping: IdMappingTable = field(default_factory=IdMappingTable)
    root_message_ids: set[str] = field(default_factory=set)
    stage_index: int = 0
    started: float = field(default_factory=time.monotonic)
    imported_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def __post_init__(self) -> None:
        self.resolver = ReferenceResolver(self.mapping)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def metadata(self, source_id: str, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            **(extra or {}),
            "import_source": self.export.platform,
            "imported_id": source_id,
            "imported_at": self.imported_at,
        }

    def warn(self, kind: WarningKind, message: str, item: str | None = None) -> None:
        self.progress.warnings.append(ImportWarningRecord(kind=kind, message=message, item=item))

    def fail(
        self,
        kind: ErrorKind,
        message: str,
        *,
        item: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        self.progress.errors.append(ImportErrorRecord(
            kind=kind,
            message=message,
            item=item,
            details=details or {},
            recoverable=recoverable,
        ))

    async def notify(self) -> None:
        if self.on_progress is None:
            return
        result = self.on_progress(self.progress.model_copy(deep=True))
        if inspect.isawaitable(result):
            await result

    async def begin_stage(self, name: str, items_total: int) -> None:
        self.stage_index += 1
        self.progress.current_step = name
        self.progress.current_step_number = self.stage_index
        self.progress.items_processed = 0
        self.progress.items_total = items_total
        self._set_progress((self.stage_index - 1) / self.progress.total_steps * 100)
        logger.info(
            "Import stage %d/%d: %s (%d items)",
            self.stage_index, self.progress.total_steps, name, items_total,
        )
        await self.notify()

    async def advance(self) -> None:
        p = self.progress
        p.items_processed += 1
        share = 100 / p.total_steps
        done = p.items_processed / p.items_total if p.items_total else 1
        self._set_progress((self.stage_index - 1) * share + done * share)
        await self.notify()

    def _set_progress(self, value: float) -> None:
        clamped = min(100.0, max(0.0, value))
        self.progress.progress = max(self.progress.progress, round(clamped, 2))


# ---------------------------------------------------------------------------
# Helpers shared by the stages
# ---------------------------------------------------------------------------


def flatten_embeds(body: str, embeds: list[NormalizedEmbed]) -> str:
    """Append one delimited block (title, description, link) per embed."""
    blocks = [body] if body else []
    for embed in embeds:
        lines = [line for line in (embed.title, embed.description, embed.url) if line]
        if lines:
            blocks.append("\n".join([EMBED_DELIMITER, *lines]))
    return "\n\n".join(blocks)


async def _with_retry(ctx: RunContext, call: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    """Await a gateway call, retrying TransientGatewayError with backoff."""
    attempt = 0
    while True:
        try:
            return await call(*args, **kwargs)
        except TransientGatewayError as e:
            if attempt >= ctx.config.max_retries:
                raise
            delay = ctx.config.retry_base_delay * (2**attempt)
            attempt += 1
            logger.debug("Transient gateway failure (%s), retry %d in %.2fs", e, attempt, delay)
            await asyncio.sleep(delay)


async def _create_and_bind(
    ctx: RunContext,
    entity_type: EntityType,
    source_id: str,
    create: Callable[..., Awaitable[str]],
    *args: Any,
) -> str:
    """Create an entity through the gateway and record its internal id.

    With preserve_ids, an id collision (and no overwrite) binds the existing
    entity so later references resolve, and skips the item. A source id that
    is already bound in this run is skipped before anything is written.
    """
    if (entity_type, source_id) in ctx.mapping:
        raise ItemSkipped(f"Duplicate source id {source_id}")
    preferred = source_id if ctx.config.preserve_ids else None
    try:
        internal_id = await _with_retry(
            ctx, create, *args,
            preferred_id=preferred, overwrite=ctx.config.overwrite_existing,
        )
    except EntityExistsError as e:
        ctx.mapping.bind(entity_type, source_id, e.entity_id)
        raise ItemSkipped(f"{e.entity} {e.entity_id} already exists") from e
    ctx.mapping.bind(entity_type, source_id, internal_id)
    return internal_id


async def _process_item(
    ctx: RunContext,
    handler: Callable[[Any], Awaitable[None]],
    item: Any,
    item_id: str,
    counters: EntityCounters,
    error_kind: ErrorKind,
) -> None:
    """Run one item in isolation and account for the outcome."""
    try:
        await handler(item)
    except ItemSkipped as skip:
        counters.skipped += 1
        logger.debug("Skipped %s %s: %s", error_kind, item_id, skip.reason)
        if skip.warn:
            ctx.warn("skipped", skip.reason, item_id)
    except Exception as e:
        counters.failed += 1
        logger.warning("Failed to import %s %s: %s", error_kind, item_id, e)
        ctx.fail(
            error_kind,
            str(e) or type(e).__name__,
            item=item_id,
            details={"exception": type(e).__name__},
        )
    else:
        counters.imported += 1
    await ctx.advance()


async def _run_sequential(
    ctx: RunContext,
    name: str,
    items: list,
    handler: Callable[[Any], Awaitable[None]],
    item_id: Callable[[Any], str],
    counters: EntityCounters,
    error_kind: ErrorKind,
) -> None:
    await ctx.begin_stage(name, len(items))
    for item in items:
        if ctx.cancelled:
            return
        await _process_item(ctx, handler, item, item_id(item), counters, error_kind)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ImportPipeline:
    """Runs one import of a NormalizedExport through a PersistenceGateway."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway
        self._cancel = asyncio.Event()
        self._ctx: RunContext | None = None

    @property
    def progress(self) -> ImportProgress:
        if self._ctx is None:
            return ImportProgress()
        return self._ctx.progress.model_copy(deep=True)

    @property
    def stats(self) -> ImportStatistics:
        if self._ctx is None:
            return ImportStatistics()
        return self._ctx.stats.model_copy(deep=True)

    def cancel(self) -> None:
        """Request cooperative cancellation. In-flight gateway calls finish."""
        self._cancel.set()

    async def run(
        self,
        export: NormalizedExport,
        config: ImportConfig | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ImportResult:
        """Import ``export``. Never raises for import failures.

        The returned result carries whatever was accumulated up to the point
        the run completed, failed or was cancelled.
        """
        if self._ctx is not None:
            raise RuntimeError("An ImportPipeline can only run once")
        ctx = RunContext(
            export=export,
            config=config or ImportConfig(),
            on_progress=on_progress,
            cancel_event=self._cancel,
        )
        self._ctx = ctx
        stages = self._plan(ctx.config)
        ctx.progress.total_steps = len(stages)
        ctx.progress.status = "importing"
        logger.info(
            "Starting %s import: %d users, %d channels, %d messages",
            export.platform, len(export.users), len(export.channels), len(export.messages),
        )

        try:
            for stage in stages:
                if ctx.cancelled:
                    break
                await stage(ctx)
            if ctx.cancelled and ctx.progress.status == "importing":
                ctx.progress.status = "cancelled"
                logger.info("Import cancelled during %s", ctx.progress.current_step)
        except ExportValidationError as e:
            logger.warning("Import validation failed: %s", e)
            ctx.fail("validation", str(e), recoverable=False)
            ctx.progress.status = "error"
        except Exception as e:
            logger.exception("Import failed unexpectedly")
            ctx.fail(
                "unknown",
                str(e) or type(e).__name__,
                details={"exception": type(e).__name__},
                recoverable=False,
            )
            ctx.progress.status = "error"

        ctx.stats.total_duration = round(time.monotonic() - ctx.started, 3)
        try:
            await ctx.notify()
        except Exception:
            logger.exception("Progress callback failed on final update")

        return ImportResult(
            success=ctx.progress.status == "completed",
            progress=ctx.progress.model_copy(deep=True),
            stats=ctx.stats.model_copy(deep=True),
        )

    def _plan(self, config: ImportConfig) -> list[Callable[[RunContext], Awaitable[None]]]:
        stages = [self._validate]
        if config.import_users:
            stages.append(self._import_users)
        if config.import_channels:
            stages.append(self._import_channels)
        if config.import_messages:
            stages.append(self._import_root_messages)
            if config.import_threads:
                stages.append(self._import_thread_replies)
        if config.import_files:
            stages.append(self._import_files)
        stages.append(self._finalize)
        return stages

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _validate(self, ctx: RunContext) -> None:
        await ctx.begin_stage("validate", 1)
        export, config = ctx.export, ctx.config
        if export.is_empty:
            raise ExportValidationError("Export contains no users, channels or messages")
        if (
            config.date_range_start is not None
            and config.date_range_end is not None
            and config.date_range_start > config.date_range_end
        ):
            raise ExportValidationError("date_range_start must not be after date_range_end")

        channel_ids = {c.source_id for c in export.channels}
        orphaned = sum(1 for m in export.messages if m.channel_id not in channel_ids)
        if orphaned:
            ctx.warn("skipped", f"{orphaned} messages reference channels missing from the export")
        user_ids = {u.source_id for u in export.users}
        unknown = sum(1 for m in export.messages if m.author_id not in user_ids)
        if unknown:
            ctx.warn("skipped", f"{unknown} messages reference authors missing from the export")
        await ctx.advance()

    async def _import_users(self, ctx: RunContext) -> None:
        async def handle(user: NormalizedUser) -> None:
            if user.is_deleted:
                raise ItemSkipped(f"Deleted user {user.handle} skipped")
            if user.is_bot and ctx.config.skip_bots:
                raise ItemSkipped(f"Bot account {user.handle} skipped")
            await _create_and_bind(
                ctx, EntityType.USERS, user.source_id, self._gateway.create_user,
                user.email, user.handle, user.display_name, user.avatar_url,
                ctx.metadata(user.source_id, user.metadata),
            )

        await _run_sequential(
            ctx, "users", ctx.export.users, handle,
            lambda u: u.source_id, ctx.stats.users, "user",
        )

    async def _import_channels(self, ctx: RunContext) -> None:
        async def handle(channel: NormalizedChannel) -> None:
            if not ctx.config.allows_channel(channel.name):
                raise ItemSkipped(f"Channel #{channel.name} excluded by channel filter")
            if channel.archived:
                raise ItemSkipped(f"Archived channel #{channel.name} skipped")
            creator = ctx.resolver.resolve(EntityType.USERS, channel.creator_id)
            channel_id = await _create_and_bind(
                ctx, EntityType.CHANNELS, channel.source_id, self._gateway.create_channel,
                channel.name, channel.description, channel.is_private, creator,
                ctx.metadata(channel.source_id),
            )
            members = ctx.resolver.resolve_many(EntityType.USERS, channel.member_ids)
            if not members:
                return
            try:
                await _with_retry(ctx, self._gateway.add_channel_members, channel_id, members)
            except GatewayError as e:
                logger.warning("Members for channel #%s not attached: %s", channel.name, e)
                ctx.fail(
                    "channel", f"Channel members not attached: {e}", item=channel.source_id,
                )

        await _run_sequential(
            ctx, "channels", ctx.export.channels, handle,
            lambda c: c.source_id, ctx.stats.channels, "channel",
        )

    async def _import_root_messages(self, ctx: RunContext) -> None:
        threads = ctx.config.import_threads
        items = [m for m in ctx.export.messages if not (threads and m.is_reply)]

        async def handle(msg: NormalizedMessage) -> None:
            await self._import_message(ctx, msg, parent_id=None)
            ctx.root_message_ids.add(msg.source_id)
            if msg.is_reply:
                ctx.warn("modified", "Thread reply imported without its parent", msg.source_id)

        await _run_sequential(
            ctx, "messages", items, handle,
            lambda m: m.source_id, ctx.stats.messages, "message",
        )

    async def _import_thread_replies(self, ctx: RunContext) -> None:
        items = [m for m in ctx.export.messages if m.is_reply]

        async def handle(msg: NormalizedMessage) -> None:
            parent_id = None
            if msg.thread_parent_id in ctx.root_message_ids:
                parent_id = ctx.resolver.resolve(EntityType.MESSAGES, msg.thread_parent_id)
            if parent_id is None:
                raise ItemSkipped("parent message not found")
            await self._import_message(ctx, msg, parent_id=parent_id)
            ctx.stats.threads_imported += 1

        await _run_sequential(
            ctx, "thread_replies", items, handle,
            lambda m: m.source_id, ctx.stats.messages, "message",
        )

    async def _import_message(
        self, ctx: RunContext, msg: NormalizedMessage, parent_id: str | None
    ) -> None:
        config = ctx.config
        if config.date_range_start is not None or config.date_range_end is not None:
            if msg.timestamp is None:
                raise ItemSkipped("Message has no timestamp and a date range is set")
            if config.date_range_start is not None and msg.timestamp < config.date_range_start:
                raise ItemSkipped("Message is before the date range")
            if config.date_range_end is not None and msg.timestamp > config.date_range_end:
                raise ItemSkipped("Message is after the date range")
        if msg.is_system and config.skip_system_messages:
            raise ItemSkipped("System message skipped", warn=False)
        if msg.body is None:
            raise ItemSkipped("Message has no content field")
        content = flatten_embeds(msg.body, msg.embeds)
        if not content.strip() and not msg.attachments:
            raise ItemSkipped("Message is empty")

        author_id = ctx.resolver.require(
            EntityType.USERS, msg.author_id, f"Author {msg.author_id} was not imported"
        )
        channel_id = ctx.resolver.require(
            EntityType.CHANNELS, msg.channel_id, f"No channel mapping for {msg.channel_id}"
        )
        extra: dict[str, Any] = {}
        if msg.pinned:
            extra["pinned"] = True
        if msg.embeds:
            extra["embed_count"] = len(msg.embeds)

        message_id = await _create_and_bind(
            ctx, EntityType.MESSAGES, msg.source_id, self._gateway.create_message,
            content, author_id, channel_id, parent_id, msg.timestamp,
            ctx.metadata(msg.source_id, extra),
        )
        if config.import_reactions:
            await self._import_reactions(ctx, msg, message_id)

    async def _import_reactions(
        self, ctx: RunContext, msg: NormalizedMessage, message_id: str
    ) -> None:
        for reaction in msg.reactions:
            for reactor in reaction.user_ids:
                user_id = ctx.resolver.resolve(EntityType.USERS, reactor)
                if user_id is None:
                    continue
                try:
                    await _with_retry(
                        ctx, self._gateway.create_reaction, message_id, user_id, reaction.emoji
                    )
                except GatewayError as e:
                    logger.warning("Reaction %s on %s failed: %s", reaction.emoji, msg.source_id, e)
                    ctx.fail("message", f"Reaction {reaction.emoji} failed: {e}", item=msg.source_id)
                    continue
                ctx.stats.reactions_imported += 1

    async def _import_files(self, ctx: RunContext) -> None:
        """Create one file per attachment with a bounded pool of gateway calls.

        Cancellation is checked before every dispatch. Calls already issued are
        allowed to finish.
        """
        items = []
        seen: set[str] = set()
        for msg in ctx.export.messages:
            if msg.source_id in seen:
                continue
            seen.add(msg.source_id)
            items.extend((msg, a) for a in msg.attachments)
        await ctx.begin_stage("files", len(items))

        async def handle(item: tuple[NormalizedMessage, NormalizedAttachment]) -> None:
            msg, attachment = item
            message_id = ctx.resolver.require(
                EntityType.MESSAGES, msg.source_id, "Owning message was not imported"
            )
            await _with_retry(
                ctx, self._gateway.create_file,
                message_id, attachment.url, attachment.filename,
                attachment.mime_type, attachment.size_bytes,
            )

        slots = asyncio.Semaphore(ctx.config.file_concurrency)

        async def worker(item: tuple[NormalizedMessage, NormalizedAttachment]) -> None:
            try:
                await _process_item(
                    ctx, handle, item, f"{item[0].source_id}/{item[1].source_id}",
                    ctx.stats.files, "file",
                )
            finally:
                slots.release()

        tasks: list[asyncio.Task] = []
        for item in items:
            await slots.acquire()
            if ctx.cancelled:
                slots.release()
                break
            tasks.append(asyncio.create_task(worker(item)))
        if tasks:
            await asyncio.gather(*tasks)

    async def _finalize(self, ctx: RunContext) -> None:
        await ctx.begin_stage("finalize", 0)
        ctx.progress.progress = 100.0
        ctx.progress.status = "completed"
        s = ctx.stats
        logger.info(
            "Import completed: users %d/%d/%d, channels %d/%d/%d, messages %d/%d/%d, "
            "files %d/%d/%d (imported/skipped/failed), %d reactions, %d thread replies",
            s.users.imported, s.users.skipped, s.users.failed,
            s.channels.imported, s.channels.skipped, s.channels.failed,
            s.messages.imported, s.messages.skipped, s.messages.failed,
            s.files.imported, s.files.skipped, s.files.failed,
            s.reactions_imported, s.threads_imported,
        )
