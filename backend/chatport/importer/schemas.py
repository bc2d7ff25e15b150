"""Pydantic schemas for import configuration, progress, results and the API."""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

ImportStatus = Literal["idle", "importing", "completed", "error", "cancelled"]
ErrorKind = Literal["validation", "user", "channel", "message", "file", "unknown"]
WarningKind = Literal["skipped", "modified"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error", "cancelled"})


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ImportConfig(BaseModel):
    import_users: bool = True
    import_channels: bool = True
    import_messages: bool = True
    import_files: bool = True
    import_reactions: bool = True
    import_threads: bool = True

    preserve_ids: bool = False
    overwrite_existing: bool = False

    channel_filter: list[str] | None = None
    date_range_start: datetime | None = None
    date_range_end: datetime | None = None

    skip_bots: bool = True
    skip_system_messages: bool = True
    file_concurrency: int = Field(default=4, ge=1, le=64)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_base_delay: float = Field(default=0.5, ge=0)

    @model_validator(mode="after")
    def _normalize(self) -> "ImportConfig":
        if self.channel_filter is not None:
            self.channel_filter = [name.strip().lstrip("#") for name in self.channel_filter]
        # Naive bounds are UTC, like every parsed message timestamp.
        if self.date_range_start is not None and self.date_range_start.tzinfo is None:
            self.date_range_start = self.date_range_start.replace(tzinfo=UTC)
        if self.date_range_end is not None and self.date_range_end.tzinfo is None:
            self.date_range_end = self.date_range_end.replace(tzinfo=UTC)
        return self

    def allows_channel(self, name: str) -> bool:
        if self.channel_filter is None:
            return True
        wanted = {n.lower() for n in self.channel_filter}
        return name.lower() in wanted


# ---------------------------------------------------------------------------
# Progress, statistics and the error model
# ---------------------------------------------------------------------------


class ImportErrorRecord(BaseModel):
    kind: ErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    item: str | None = None
    recoverable: bool = True


class ImportWarningRecord(BaseModel):
    kind: WarningKind
    message: str
    item: str | None = None


class ImportProgress(BaseModel):
    status: ImportStatus = "idle"
    current_step: str | None = None
    current_step_number: int = 0
    total_steps: int = 0
    items_processed: int = 0
    items_total: int = 0
    progress: float = 0.0  # 0-100
    errors: list[ImportErrorRecord] = Field(default_factory=list)
    warnings: list[ImportWarningRecord] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class EntityCounters(BaseModel):
    imported: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.imported + self.skipped + self.failed


class ImportStatistics(BaseModel):
    users: EntityCounters = Field(default_factory=EntityCounters)
    channels: EntityCounters = Field(default_factory=EntityCounters)
    messages: EntityCounters = Field(default_factory=EntityCounters)
    files: EntityCounters = Field(default_factory=EntityCounters)
    reactions_imported: int = 0
    threads_imported: int = 0
    total_duration: float = 0.0  # seconds


class ImportResult(BaseModel):
    success: bool
    progress: ImportProgress
    stats: ImportStatistics


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------


class ImportPreviewResponse(BaseModel):
    format_detected: str
    user_count: int
    bot_count: int
    channel_count: int
    channel_names: list[str]
    message_count: int
    thread_reply_count: int
    reaction_count: int
    attachment_count: int
    estimated_seconds: float
    warnings: list[str]


class ImportStartedResponse(BaseModel):
    run_id: str
    platform: str
    status: ImportStatus


class ImportRunResponse(BaseModel):
    run_id: str
    platform: str
    filename: str | None
    status: ImportStatus
    progress: ImportProgress
    stats: ImportStatistics
    started_at: datetime
    finished_at: datetime | None = None
