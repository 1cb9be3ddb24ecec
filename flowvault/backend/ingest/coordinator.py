"""
ingest/coordinator.py

IngestionCoordinator — drives capture files through the write path.

Per-file state machine:

    Discovered ─▶ (marker exists? ─▶ skip)
               ─▶ Extracting ─▶ Decoding ─▶ Aggregating ─▶ Persisting ─▶ Marked

Failure handling (always per file, never per pass):
  - ExtractionFailed → logged, file left unmarked, retried next tick
  - PersistFailed    → batch rolled back, file left unmarked, retried next tick
  - anything else    → logged with traceback, same retry semantics

Scheduling:
  run() executes one pass in a worker thread, waits for it to finish and only
  then sleeps the scan interval, so two passes can never overlap. run_once()
  additionally refuses to start while another pass is in flight.

The processed-file marker is written in the same transaction as the flow
rows, which makes re-running a pass over an unchanged directory a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..aggregation import aggregate_flows
from ..errors import ExtractionFailed, PersistFailed
from ..metrics import METRICS
from ..storage.repository import FlowRepository
from .decoder import decode_lines
from .extractor import Extractor

logger = logging.getLogger(__name__)

# nfcapd writes into nfcapd.current.<pid> and renames on rotation
_IN_PROGRESS_MARKER = ".current"


class FileOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED   = "skipped"
    FAILED    = "failed"


@dataclass
class IngestReport:
    """Summary of one directory pass."""

    processed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    flows_written: int = 0
    busy: bool = False
    """True when the pass was refused because another one was running."""

    def record(self, name: str, outcome: FileOutcome) -> None:
        {
            FileOutcome.PROCESSED: self.processed,
            FileOutcome.SKIPPED:   self.skipped,
            FileOutcome.FAILED:    self.failed,
        }[outcome].append(name)

    def __repr__(self) -> str:
        return (
            f"IngestReport(processed={len(self.processed)} "
            f"skipped={len(self.skipped)} failed={len(self.failed)} "
            f"flows={self.flows_written})"
        )


class IngestionCoordinator:
    """
    Walks a capture directory and ingests every unprocessed file.

    Args:
        directory:   Root directory scanned recursively on each pass.
        extractor:   Turns a capture file into exporter text lines.
        repository:  Flow store; owns the processed-file ledger.
        file_prefix: Only file names starting with this prefix are considered.
    """

    def __init__(
        self,
        directory: str | Path,
        extractor: Extractor,
        repository: FlowRepository,
        file_prefix: str = "nfcapd.",
    ) -> None:
        self.directory = Path(directory)
        self._extractor = extractor
        self._repo = repository
        self._prefix = file_prefix
        self._pass_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def is_capture_file(self, name: str) -> bool:
        return name.startswith(self._prefix) and _IN_PROGRESS_MARKER not in name

    def discover(self) -> list[Path]:
        """All capture files under the directory, in a stable order."""
        if not self.directory.is_dir():
            logger.warning("Capture directory %s does not exist", self.directory)
            return []

        found: list[Path] = []
        for root, _dirs, files in os.walk(self.directory):
            for name in files:
                if self.is_capture_file(name):
                    found.append(Path(root) / name)
        return sorted(found)

    # ------------------------------------------------------------------
    # One file
    # ------------------------------------------------------------------

    def process_file(self, path: Path) -> tuple[FileOutcome, int]:
        """
        Run the full pipeline for one file.

        Returns:
            (outcome, flow rows written). Never raises for per-file failures.
        """
        name = path.name
        try:
            already_done = self._repo.is_file_processed(name)
        except sqlite3.Error as exc:
            logger.error("Processed-file check failed for %s: %s", path, exc)
            return FileOutcome.FAILED, 0
        if already_done:
            logger.debug("Already processed: %s", name)
            return FileOutcome.SKIPPED, 0

        logger.info("Processing new file: %s", path)
        try:
            lines = self._extractor.extract(path)
            flows = aggregate_flows(decode_lines(lines))
            written = self._repo.persist_file(name, flows)
        except ExtractionFailed as exc:
            logger.error("Extraction failed for %s: %s", path, exc.reason)
            return FileOutcome.FAILED, 0
        except PersistFailed as exc:
            logger.error("Saving flows failed for %s: %s", path, exc.reason)
            return FileOutcome.FAILED, 0
        except Exception:
            logger.exception("Unexpected error while ingesting %s", path)
            return FileOutcome.FAILED, 0

        logger.info("Ingested %s — %d aggregated flows", name, written)
        return FileOutcome.PROCESSED, written

    # ------------------------------------------------------------------
    # One pass
    # ------------------------------------------------------------------

    def run_once(self) -> IngestReport:
        """Process every unmarked capture file once, sequentially."""
        report = IngestReport()
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("Ingestion pass already running — skipping this tick")
            report.busy = True
            return report

        try:
            logger.info("Scanning %s for new capture files…", self.directory)
            for path in self.discover():
                outcome, written = self.process_file(path)
                report.record(path.name, outcome)
                report.flows_written += written
                self._count(outcome, written)
        finally:
            self._pass_lock.release()

        METRICS.passes_completed.inc()
        logger.info("Pass complete — %r", report)
        return report

    @staticmethod
    def _count(outcome: FileOutcome, written: int) -> None:
        if outcome is FileOutcome.PROCESSED:
            METRICS.files_processed.inc()
            METRICS.flows_written.inc(written)
        elif outcome is FileOutcome.SKIPPED:
            METRICS.files_skipped.inc()
        else:
            METRICS.files_failed.inc()

    # ------------------------------------------------------------------
    # Long-lived loop
    # ------------------------------------------------------------------

    async def run(self, interval_seconds: float, shutdown_event: asyncio.Event) -> None:
        """
        Ingest on a fixed interval until shutdown_event is set.

        The interval is measured from the end of one pass to the start of
        the next.
        """
        logger.info(
            "Ingestion started — directory=%s interval=%ss",
            self.directory, interval_seconds,
        )
        while not shutdown_event.is_set():
            try:
                await asyncio.to_thread(self.run_once)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Ingestion pass crashed — retrying next tick")

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
        logger.info("Ingestion exiting — metrics=%s", METRICS.as_dict())
