"""
backend/errors.py

Exception taxonomy for the ingestion and query paths.

Ingestion errors are contained per line (DecodeLineSkipped) or per file
(ExtractionFailed, PersistFailed) and never escape the ingestion loop.
Query errors subclass QueryInputError and are returned to the caller as
HTTP 400 responses.
"""

from __future__ import annotations


class FlowVaultError(Exception):
    """Base class for every error raised by the backend."""


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class ExtractionFailed(FlowVaultError):
    """The external export tool could not produce usable output for a file."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"extraction failed for {path}: {reason}")
        self.path = path
        self.reason = reason


class DecodeLineSkipped(FlowVaultError):
    """A single output line was malformed and has been dropped."""

    def __init__(self, reason: str, line: str) -> None:
        super().__init__(f"{reason}: {line!r}")
        self.reason = reason
        self.line = line


class PersistFailed(FlowVaultError):
    """The batch insert for a file was rolled back."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"persist failed for {file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


# ---------------------------------------------------------------------------
# Query input
# ---------------------------------------------------------------------------

class QueryInputError(FlowVaultError):
    """Invalid caller-supplied query parameter."""


class InvalidAddressExpression(QueryInputError):
    pass


class InvalidMask(QueryInputError):
    pass


class InvalidCIDR(QueryInputError):
    pass


class InvalidTimeRange(QueryInputError):
    pass


class InvalidGranularity(QueryInputError):
    pass
