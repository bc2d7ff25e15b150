"""Source adapters: one per export dialect, all producing a NormalizedExport."""

from chatport.importer.parsers.base import SourceAdapter
from chatport.importer.parsers.detection import ADAPTERS, detect_format, get_adapter

__all__ = ["ADAPTERS", "SourceAdapter", "detect_format", "get_adapter"]
