"""Source adapter interface.

An adapter turns one platform's export dialect into a NormalizedExport.
``parse`` is a template: decode, validate the top-level shape, then extract
users, channels and messages. Subclasses override the hooks.
"""

from abc import ABC, abstractmethod
from typing import Any

from chatport.importer.errors import ExportValidationError
from chatport.importer.models import (
    NormalizedChannel,
    NormalizedExport,
    NormalizedMessage,
    NormalizedUser,
)
from chatport.utils.json import load_json_bytes


class SourceAdapter(ABC):
    platform: str = ""

    def parse(self, raw: bytes | str | Any) -> NormalizedExport:
        """Parse raw export input. Raises ExportValidationError on bad shape."""
        payload = self.load(raw)
        self.validate(payload)
        export = NormalizedExport(platform=self.platform)
        export.users = self.extract_users(payload)
        export.channels = self.extract_channels(payload)
        export.messages = self.extract_messages(payload)
        export.warnings = self.collect_warnings(payload, export)
        return export

    def load(self, raw: bytes | str | Any) -> Any:
        """Decode raw bytes into the adapter's payload. Parsed objects pass through."""
        if not isinstance(raw, (bytes, str)):
            return raw
        try:
            return load_json_bytes(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise ExportValidationError(f"Invalid JSON: {e}") from e

    @abstractmethod
    def validate(self, payload: Any) -> None:
        """Raise ExportValidationError if the payload has the wrong shape."""
        ...

    @abstractmethod
    def extract_users(self, payload: Any) -> list[NormalizedUser]:
        ...

    @abstractmethod
    def extract_channels(self, payload: Any) -> list[NormalizedChannel]:
        ...

    @abstractmethod
    def extract_messages(self, payload: Any) -> list[NormalizedMessage]:
        ...

    def collect_warnings(self, payload: Any, export: NormalizedExport) -> list[str]:
        return []


class UserRoster:
    """Ordered, deduplicated user collection. First occurrence wins."""

    def __init__(self) -> None:
        self._users: dict[str, NormalizedUser] = {}

    def add(self, user: NormalizedUser) -> None:
        if user.source_id not in self._users:
            self._users[user.source_id] = user

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._users

    def to_list(self) -> list[NormalizedUser]:
        return list(self._users.values())
