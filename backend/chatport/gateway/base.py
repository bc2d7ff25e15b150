"""Abstract persistence gateway consumed by the import pipeline."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any


class PersistenceGateway(ABC):
    """Creates users, channels, messages, reactions and files in the target store.

    ``metadata`` payloads always carry ``import_source``, ``imported_id`` and
    ``imported_at``. When ``preferred_id`` is given the implementation must use
    it as the new entity's id, raising EntityExistsError if it is taken and
    ``overwrite`` is false.
    """

    @abstractmethod
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
        """Create a user and return its internal id."""
        ...

    @abstractmethod
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
        """Create a channel and return its internal id."""
        ...

    @abstractmethod
    async def add_channel_members(self, channel_id: str, member_ids: list[str]) -> None:
        ...

    @abstractmethod
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
        """Create a message and return its internal id."""
        ...

    @abstractmethod
    async def create_reaction(self, message_id: str, user_id: str, emoji: str) -> None:
        ...

    @abstractmethod
    async def create_file(
        self,
        message_id: str,
        source_url: str,
        filename: str,
        mime_type: str | None,
        size_bytes: int,
    ) -> str:
        """Register an attachment and return the file's internal id."""
        ...
