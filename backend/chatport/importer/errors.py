"""Exceptions raised by adapters and the import pipeline."""


class ExportValidationError(Exception):
    """Raised when an export does not match the expected top-level shape.

    Fatal: nothing is created once this is raised.
    """


class DuplicateBindingError(RuntimeError):
    """Raised when a source id is bound twice in one IdMappingTable."""

    def __init__(self, entity_type: str, source_id: str) -> None:
        super().__init__(f"{entity_type} {source_id!r} is already mapped")
        self.entity_type = entity_type
        self.source_id = source_id


class ItemSkipped(Exception):
    """Signals that a single item is intentionally not imported.

    Raised inside per-item handlers and caught at the stage loop, where it is
    counted as skipped and recorded as a warning.
    """

    def __init__(self, reason: str, *, warn: bool = True) -> None:
        super().__init__(reason)
        self.reason = reason
        self.warn = warn


class RunNotFoundError(LookupError):
    """No import run with the given id."""


class RunFinishedError(Exception):
    """The import run already reached a terminal state."""
