"""
ingest/__init__.py

Public API for the ingestion sub-package.
"""

from .coordinator import FileOutcome, IngestionCoordinator, IngestReport
from .decoder import decode_lines, parse_line
from .extractor import Extractor, NfdumpExtractor

__all__ = [
    "Extractor",
    "FileOutcome",
    "IngestReport",
    "IngestionCoordinator",
    "NfdumpExtractor",
    "decode_lines",
    "parse_line",
]
