"""Normalized export: the format-agnostic intermediate representation.

Every source adapter produces a NormalizedExport, which ImportPipeline consumes
to create entities through the persistence gateway. All reference fields hold
source-native identifiers; translation to internal ids only happens through
the IdMappingTable.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class NormalizedUser:
    source_id: str
    handle: str
    display_name: str
    email: str | None = None
    avatar_url: str | None = None
    is_bot: bool = False
    is_deleted: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizedChannel:
    source_id: str
    name: str
    description: str = ""
    is_private: bool = False
    creator_id: str | None = None
    member_ids: list[str] = field(default_factory=list)
    archived: bool = False


@dataclass
class NormalizedEmbed:
    title: str | None = None
    description: str | None = None
    url: str | None = None


@dataclass
class NormalizedAttachment:
    source_id: str
    url: str
    filename: str
    mime_type: str | None = None
    size_bytes: int = 0


@dataclass
class NormalizedReaction:
    """A reaction emoji with its reactors, or a bare count when unknown."""

    emoji: str
    user_ids: list[str] = field(default_factory=list)
    count: int = 0


@dataclass
class NormalizedMessage:
    source_id: str
    author_id: str | None
    channel_id: str | None
    body: str | None  # None when the source row had no content field
    timestamp: datetime | None = None
    thread_parent_id: str | None = None
    embeds: list[NormalizedEmbed] = field(default_factory=list)
    attachments: list[NormalizedAttachment] = field(default_factory=list)
    reactions: list[NormalizedReaction] = field(default_factory=list)
    pinned: bool = False
    is_system: bool = False

    @property
    def is_reply(self) -> bool:
        return self.thread_parent_id is not None


@dataclass
class NormalizedExport:
    """A complete parsed export, ready for the import pipeline."""

    platform: str  # "discord" | "slack" | "generic"
    users: list[NormalizedUser] = field(default_factory=list)
    channels: list[NormalizedChannel] = field(default_factory=list)
    messages: list[NormalizedMessage] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.users or self.channels or self.messages)

    def attachment_count(self) -> int:
        return sum(len(m.attachments) for m in self.messages)
