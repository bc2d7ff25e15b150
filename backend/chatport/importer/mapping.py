"""Per-run ID mapping between source-native and internal identifiers."""

from enum import StrEnum

from chatport.importer.errors import DuplicateBindingError, ItemSkipped


class EntityType(StrEnum):
    USERS = "users"
    CHANNELS = "channels"
    MESSAGES = "messages"


class IdMappingTable:
    """Three write-once maps, source_id -> internal_id.

    Lives for exactly one import run. Later stages learn the internal identity
    of entities created by earlier stages only through this table.
    """

    def __init__(self) -> None:
        self._maps: dict[EntityType, dict[str, str]] = {e: {} for e in EntityType}

    def bind(self, entity_type: EntityType, source_id: str, internal_id: str) -> None:
        """Record a mapping. Raises DuplicateBindingError if already bound."""
        table = self._maps[EntityType(entity_type)]
        if source_id in table:
            raise DuplicateBindingError(str(entity_type), source_id)
        table[source_id] = internal_id

    def lookup(self, entity_type: EntityType, source_id: str | None) -> str | None:
        if source_id is None:
            return None
        return self._maps[EntityType(entity_type)].get(source_id)

    def __contains__(self, key: tuple[EntityType, str]) -> bool:
        entity_type, source_id = key
        return source_id in self._maps[EntityType(entity_type)]

    def counts(self) -> dict[str, int]:
        return {str(e): len(m) for e, m in self._maps.items()}


class ReferenceResolver:
    """Resolves source-native reference fields against an IdMappingTable.

    Unresolved references are reported, never papered over with placeholder
    entities. The calling stage decides whether that means a skip.
    """

    def __init__(self, table: IdMappingTable) -> None:
        self._table = table

    def resolve(self, entity_type: EntityType, source_id: str | None) -> str | None:
        return self._table.lookup(entity_type, source_id)

    def require(self, entity_type: EntityType, source_id: str | None, reason: str) -> str:
        """Return the internal id or raise ItemSkipped with ``reason``."""
        internal_id = self._table.lookup(entity_type, source_id)
        if internal_id is None:
            raise ItemSkipped(reason)
        return internal_id

    def resolve_many(self, entity_type: EntityType, source_ids: list[str]) -> list[str]:
        """Translate a list of ids, silently dropping unresolved ones."""
        resolved: list[str] = []
        seen: set[str] = set()
        for source_id in source_ids:
            internal_id = self._table.lookup(entity_type, source_id)
            if internal_id is not None and internal_id not in seen:
                seen.add(internal_id)
                resolved.append(internal_id)
        return resolved
