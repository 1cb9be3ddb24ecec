"""
tests/test_coordinator.py

Tests for ingest/coordinator.py. A canned extractor stands in for nfdump;
capture files are empty placeholders under tmp_path.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path

import pytest

from flowvault.backend.errors import ExtractionFailed
from flowvault.backend.ingest.coordinator import FileOutcome, IngestionCoordinator
from flowvault.backend.metrics import METRICS
from flowvault.backend.storage.database import Database
from flowvault.backend.storage.repository import FlowRepository

LINES_A = [
    "2024-03-01 10:05:01.000,10.0.0.5,8.8.8.8,51514,53,UDP,1,100",
    "2024-03-01 10:07:12.500,10.0.0.5,8.8.8.8,51514,53,UDP,2,200",
    "Summary: total flows: 2",
]
LINES_B = [
    "2024-03-01 10:10:00.000,10.0.0.6,1.1.1.1,40000,443,TCP,5,5000",
]


class CannedExtractor:
    """Returns preset output per file name; exceptions are raised instead."""

    def __init__(self, outputs: dict[str, list[str] | Exception]) -> None:
        self.outputs = outputs
        self.calls: list[str] = []

    def extract(self, path):
        name = Path(path).name
        self.calls.append(name)
        out = self.outputs.get(name, [])
        if isinstance(out, Exception):
            raise out
        return out


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    METRICS.reset_all()
    yield


@pytest.fixture
def db():
    d = Database(":memory:")
    d.init_schema()
    yield d
    d.close()


@pytest.fixture
def repo(db):
    return FlowRepository(db)


@pytest.fixture
def capture_dir(tmp_path):
    for name in ("nfcapd.202403011005", "nfcapd.202403011010"):
        (tmp_path / name).touch()
    return tmp_path


def make_coordinator(directory, repo, outputs) -> tuple[IngestionCoordinator, CannedExtractor]:
    extractor = CannedExtractor(outputs)
    return IngestionCoordinator(directory, extractor, repo), extractor


def flow_rows(db: Database) -> list[dict]:
    rows = db.execute("SELECT * FROM flows ORDER BY timestamp, src_ip").fetchall()
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

class TestDiscovery:

    def test_prefix_filter(self, tmp_path, repo):
        for name in ("nfcapd.1", "nfcapd.2", "README", "other.nfcapd"):
            (tmp_path / name).touch()
        coord, _ = make_coordinator(tmp_path, repo, {})
        assert [p.name for p in coord.discover()] == ["nfcapd.1", "nfcapd.2"]

    def test_in_progress_file_ignored(self, tmp_path, repo):
        (tmp_path / "nfcapd.current.4242").touch()
        (tmp_path / "nfcapd.202403011005").touch()
        coord, _ = make_coordinator(tmp_path, repo, {})
        assert [p.name for p in coord.discover()] == ["nfcapd.202403011005"]

    def test_recurses_into_subdirectories(self, tmp_path, repo):
        sub = tmp_path / "2024" / "03" / "01"
        sub.mkdir(parents=True)
        (sub / "nfcapd.202403011005").touch()
        coord, _ = make_coordinator(tmp_path, repo, {})
        assert coord.discover() == [sub / "nfcapd.202403011005"]

    def test_missing_directory_is_empty(self, tmp_path, repo):
        coord, _ = make_coordinator(tmp_path / "absent", repo, {})
        assert coord.discover() == []
        assert coord.run_once().processed == []

    def test_custom_prefix(self, tmp_path, repo):
        (tmp_path / "ft-v05.2024").touch()
        (tmp_path / "nfcapd.1").touch()
        coord = IngestionCoordinator(tmp_path, CannedExtractor({}), repo, file_prefix="ft-")
        assert [p.name for p in coord.discover()] == ["ft-v05.2024"]


# ---------------------------------------------------------------------------
# Single pass
# ---------------------------------------------------------------------------

class TestRunOnce:

    def test_ingests_and_aggregates(self, capture_dir, db, repo):
        coord, _ = make_coordinator(capture_dir, repo, {
            "nfcapd.202403011005": LINES_A,
            "nfcapd.202403011010": LINES_B,
        })
        report = coord.run_once()

        assert report.processed == ["nfcapd.202403011005", "nfcapd.202403011010"]
        assert report.flows_written == 2
        rows = flow_rows(db)
        assert rows[0]["timestamp"] == "2024-03-01 10:05:00"
        assert rows[0]["packets"] == 3
        assert rows[0]["bytes"] == 300
        assert rows[1]["bytes"] == 5000

    def test_second_pass_is_noop(self, capture_dir, db, repo):
        coord, extractor = make_coordinator(capture_dir, repo, {
            "nfcapd.202403011005": LINES_A,
            "nfcapd.202403011010": LINES_B,
        })
        coord.run_once()
        before = flow_rows(db)
        extractor.calls.clear()

        report = coord.run_once()

        assert report.processed == []
        assert report.skipped == ["nfcapd.202403011005", "nfcapd.202403011010"]
        assert extractor.calls == []
        assert flow_rows(db) == before

    def test_extraction_failure_leaves_file_unmarked(self, capture_dir, db, repo):
        coord, extractor = make_coordinator(capture_dir, repo, {
            "nfcapd.202403011005": ExtractionFailed("nfcapd.202403011005", "corrupt"),
            "nfcapd.202403011010": LINES_B,
        })
        report = coord.run_once()

        assert report.failed == ["nfcapd.202403011005"]
        assert report.processed == ["nfcapd.202403011010"]
        assert repo.is_file_processed("nfcapd.202403011005") is False

        # retried on the next pass once the tool succeeds
        extractor.outputs["nfcapd.202403011005"] = LINES_A
        report = coord.run_once()
        assert report.processed == ["nfcapd.202403011005"]
        assert len(flow_rows(db)) == 2

    def test_unexpected_error_contained(self, capture_dir, repo):
        coord, _ = make_coordinator(capture_dir, repo, {
            "nfcapd.202403011005": RuntimeError("boom"),
            "nfcapd.202403011010": LINES_B,
        })
        report = coord.run_once()
        assert report.failed == ["nfcapd.202403011005"]
        assert report.processed == ["nfcapd.202403011010"]

    def test_persist_failure_reported(self, capture_dir, db, repo):
        coord, _ = make_coordinator(capture_dir, repo, {"nfcapd.202403011005": LINES_A})
        # marker inserts now fail after the flow rows went in
        db.execute("DROP TABLE processed_files")
        db.execute("CREATE TABLE processed_files (file_name TEXT CHECK (0))")
        db.commit()

        report = coord.run_once()

        assert "nfcapd.202403011005" in report.failed
        assert flow_rows(db) == []

    def test_ledger_error_does_not_abort_pass(self, capture_dir, db):
        class LockedLedgerRepository(FlowRepository):
            def is_file_processed(self, file_name):
                if file_name == "nfcapd.202403011005":
                    raise sqlite3.OperationalError("database is locked")
                return super().is_file_processed(file_name)

        repo = LockedLedgerRepository(db)
        coord, _ = make_coordinator(capture_dir, repo, {
            "nfcapd.202403011005": LINES_A,
            "nfcapd.202403011010": LINES_B,
        })
        report = coord.run_once()

        assert report.failed == ["nfcapd.202403011005"]
        assert report.processed == ["nfcapd.202403011010"]
        assert METRICS.passes_completed.value == 1
        assert [r["bytes"] for r in flow_rows(db)] == [5000]

    def test_empty_output_marks_file(self, capture_dir, db, repo):
        coord, _ = make_coordinator(capture_dir, repo, {})
        report = coord.run_once()
        assert len(report.processed) == 2
        assert report.flows_written == 0
        assert repo.processed_file_count() == 2

    def test_metrics_updated(self, capture_dir, repo):
        coord, _ = make_coordinator(capture_dir, repo, {
            "nfcapd.202403011005": LINES_A,
            "nfcapd.202403011010": ExtractionFailed("x", "bad"),
        })
        coord.run_once()
        coord.run_once()
        counters = METRICS.as_dict()
        assert counters["passes_completed"] == 2
        assert counters["files_processed"] == 1
        assert counters["files_failed"] == 2
        assert counters["files_skipped"] == 1
        assert counters["flows_written"] == 1
        assert counters["lines_decoded"] == 2

    def test_refuses_overlapping_pass(self, capture_dir, repo):
        coord, extractor = make_coordinator(capture_dir, repo, {})
        coord._pass_lock.acquire()
        try:
            report = coord.run_once()
        finally:
            coord._pass_lock.release()
        assert report.busy is True
        assert extractor.calls == []
        assert METRICS.passes_completed.value == 0

    def test_process_file_outcome(self, capture_dir, repo):
        coord, _ = make_coordinator(capture_dir, repo, {"nfcapd.202403011010": LINES_B})
        path = capture_dir / "nfcapd.202403011010"
        assert coord.process_file(path) == (FileOutcome.PROCESSED, 1)
        assert coord.process_file(path) == (FileOutcome.SKIPPED, 0)


# ---------------------------------------------------------------------------
# Scheduled loop
# ---------------------------------------------------------------------------

class TestRunLoop:

    @pytest.mark.asyncio
    async def test_stops_on_shutdown(self, capture_dir, repo):
        coord, _ = make_coordinator(capture_dir, repo, {"nfcapd.202403011005": LINES_A})
        shutdown = asyncio.Event()
        task = asyncio.create_task(coord.run(interval_seconds=60, shutdown_event=shutdown))

        for _ in range(100):
            if METRICS.passes_completed.value >= 1:
                break
            await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        assert METRICS.passes_completed.value == 1
        assert repo.is_file_processed("nfcapd.202403011005")

    @pytest.mark.asyncio
    async def test_passes_repeat_on_interval(self, capture_dir, repo):
        coord, _ = make_coordinator(capture_dir, repo, {})
        shutdown = asyncio.Event()
        task = asyncio.create_task(coord.run(interval_seconds=0.01, shutdown_event=shutdown))

        for _ in range(200):
            if METRICS.passes_completed.value >= 3:
                break
            await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(task, timeout=2)
        assert METRICS.passes_completed.value >= 3

    @pytest.mark.asyncio
    async def test_passes_never_overlap(self, tmp_path, repo):
        (tmp_path / "nfcapd.1").touch()
        active = 0
        peak = 0
        guard = threading.Lock()

        class SlowExtractor:
            def extract(self, path):
                nonlocal active, peak
                with guard:
                    active += 1
                    peak = max(peak, active)
                threading.Event().wait(0.05)
                with guard:
                    active -= 1
                raise ExtractionFailed(str(path), "keep retrying")

        coord = IngestionCoordinator(tmp_path, SlowExtractor(), repo)
        shutdown = asyncio.Event()
        task = asyncio.create_task(coord.run(interval_seconds=0.001, shutdown_event=shutdown))
        await asyncio.sleep(0.3)
        shutdown.set()
        await asyncio.wait_for(task, timeout=2)
        assert peak == 1
