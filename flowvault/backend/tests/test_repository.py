"""
tests/test_repository.py

Tests for storage/repository.py using in-memory SQLite (":memory:").
All tests are synchronous — repository is not async.
"""

from __future__ import annotations

from datetime import datetime

import pytest

from flowvault.backend.errors import PersistFailed
from flowvault.backend.models import FlowTuple
from flowvault.backend.query.resolver import resolve_address
from flowvault.backend.storage.database import Database, ip_in_network
from flowvault.backend.storage.repository import FlowFilter, FlowRepository


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db():
    """In-memory SQLite database, initialised fresh for each test."""
    d = Database(":memory:")
    d.init_schema()
    yield d
    d.close()


@pytest.fixture
def repo(db):
    return FlowRepository(db)


def make_flow(
    ts: datetime = datetime(2024, 3, 1, 10, 5),
    src_ip: str = "10.0.0.5",
    dst_ip: str = "8.8.8.8",
    byte_count: int = 100,
    packets: int = 1,
    src_port: int = 51514,
    dst_port: int = 443,
    protocol: int = 6,
) -> FlowTuple:
    return FlowTuple(
        timestamp=ts,
        src_ip=src_ip,
        dst_ip=dst_ip,
        src_port=src_port,
        dst_port=dst_port,
        protocol=protocol,
        packets=packets,
        bytes=byte_count,
    )


def flow_count(db: Database) -> int:
    return db.execute("SELECT COUNT(*) FROM flows").fetchone()[0]


# ---------------------------------------------------------------------------
# ip_in_network SQL function
# ---------------------------------------------------------------------------

class TestIpInNetwork:

    @pytest.mark.parametrize("ip,cidr,expected", [
        ("10.0.0.5", "10.0.0.0/24", 1),
        ("10.0.0.0", "10.0.0.0/24", 1),
        ("10.0.0.255", "10.0.0.0/24", 1),
        ("10.0.1.0", "10.0.0.0/24", 0),
        ("10.0.0.5", "10.0.0.5/32", 1),
        ("2001:db8::1", "2001:db8::/32", 1),
        ("10.0.0.5", "2001:db8::/32", 0),
        ("not-an-ip", "10.0.0.0/8", 0),
        (None, "10.0.0.0/8", 0),
    ])
    def test_containment(self, ip, cidr, expected):
        assert ip_in_network(ip, cidr) == expected

    def test_registered_in_sqlite(self, db):
        row = db.execute("SELECT ip_in_network('192.168.1.7', '192.168.0.0/16')").fetchone()
        assert row[0] == 1


# ---------------------------------------------------------------------------
# persist_file / processed-file ledger
# ---------------------------------------------------------------------------

class TestPersistFile:

    def test_rows_and_marker_written(self, db, repo):
        written = repo.persist_file("nfcapd.202403011005", [make_flow(), make_flow(dst_ip="1.1.1.1")])
        assert written == 2
        assert flow_count(db) == 2
        assert repo.is_file_processed("nfcapd.202403011005") is True

    def test_unknown_file_not_processed(self, repo):
        assert repo.is_file_processed("nfcapd.202403011010") is False

    def test_empty_file_still_marked(self, db, repo):
        assert repo.persist_file("nfcapd.empty", []) == 0
        assert repo.is_file_processed("nfcapd.empty") is True
        assert flow_count(db) == 0

    def test_timestamp_stored_at_second_precision(self, db, repo):
        repo.persist_file("f", [make_flow(ts=datetime(2024, 3, 1, 10, 5))])
        row = db.execute("SELECT timestamp FROM flows").fetchone()
        assert row["timestamp"] == "2024-03-01 10:05:00"

    def test_failure_rolls_back_rows(self, db, repo):
        repo.persist_file("nfcapd.dup", [make_flow()])
        # second marker insert violates UNIQUE after the flow rows went in
        with pytest.raises(PersistFailed) as exc_info:
            repo.persist_file("nfcapd.dup", [make_flow(), make_flow(), make_flow()])
        assert exc_info.value.file_name == "nfcapd.dup"
        assert flow_count(db) == 1

    def test_repository_usable_after_rollback(self, db, repo):
        repo.persist_file("a", [make_flow()])
        with pytest.raises(PersistFailed):
            repo.persist_file("a", [make_flow()])
        repo.persist_file("b", [make_flow()])
        assert flow_count(db) == 2
        assert repo.processed_file_count() == 2

    def test_last_processed_file(self, repo):
        assert repo.last_processed_file() is None
        repo.persist_file("nfcapd.1", [])
        repo.persist_file("nfcapd.2", [])
        last = repo.last_processed_file()
        assert last["file_name"] == "nfcapd.2"
        assert last["processed_at"]


# ---------------------------------------------------------------------------
# Read queries
# ---------------------------------------------------------------------------

@pytest.fixture
def seeded(repo):
    repo.persist_file("nfcapd.1", [
        make_flow(ts=datetime(2024, 3, 1, 10, 5), src_ip="10.0.0.5", dst_ip="8.8.8.8", byte_count=100),
        make_flow(ts=datetime(2024, 3, 1, 10, 10), src_ip="8.8.8.8", dst_ip="10.0.0.5", byte_count=40),
        make_flow(ts=datetime(2024, 3, 1, 11, 0), src_ip="10.0.0.5", dst_ip="10.0.0.9", byte_count=51),
        make_flow(ts=datetime(2024, 3, 2, 9, 0), src_ip="192.168.1.1", dst_ip="1.1.1.1", byte_count=7),
    ])
    return repo


class TestCountAndPage:

    def test_count_without_filter(self, seeded):
        assert seeded.count_flows(FlowFilter()) == 4

    def test_count_exact_address_either_side(self, seeded):
        flt = FlowFilter(match=resolve_address("10.0.0.5"))
        assert seeded.count_flows(flt) == 3

    def test_count_cidr(self, seeded):
        flt = FlowFilter(match=resolve_address("10.0.0.0/24"))
        assert seeded.count_flows(flt) == 3

    def test_count_wildcard(self, seeded):
        flt = FlowFilter(match=resolve_address("192.168.*"))
        assert seeded.count_flows(flt) == 1

    def test_time_bounds_half_open(self, seeded):
        flt = FlowFilter(
            since=datetime(2024, 3, 1, 10, 10),
            until=datetime(2024, 3, 1, 11, 0),
        )
        assert seeded.count_flows(flt) == 1

    def test_newest_first(self, seeded):
        rows = seeded.get_flows(FlowFilter(), limit=10, offset=0)
        assert [r["timestamp"] for r in rows] == [
            "2024-03-02 09:00:00",
            "2024-03-01 11:00:00",
            "2024-03-01 10:10:00",
            "2024-03-01 10:05:00",
        ]

    def test_limit_and_offset(self, seeded):
        rows = seeded.get_flows(FlowFilter(), limit=2, offset=2)
        assert [r["bytes"] for r in rows] == [40, 100]

    def test_offset_past_end_is_empty(self, seeded):
        assert seeded.get_flows(FlowFilter(), limit=10, offset=50) == []


class TestDirectionalTotals:

    def test_exact_address(self, seeded):
        totals = seeded.get_directional_totals(FlowFilter(match=resolve_address("10.0.0.5")))
        # 100 out, 40 in, 51 out to 10.0.0.9
        assert totals == {"total_bytes_in": 40, "total_bytes_out": 151, "total_traffic": 191}

    def test_range_splits_internal_traffic(self, seeded):
        totals = seeded.get_directional_totals(FlowFilter(match=resolve_address("10.0.0.0/24")))
        assert totals["total_bytes_out"] == 100 + 25
        assert totals["total_bytes_in"] == 40 + 25
        assert totals["total_traffic"] == 191

    def test_no_rows_gives_zeros(self, seeded):
        totals = seeded.get_directional_totals(FlowFilter(match=resolve_address("172.16.0.1")))
        assert totals == {"total_bytes_in": 0, "total_bytes_out": 0, "total_traffic": 0}

    def test_requires_match(self, seeded):
        with pytest.raises(ValueError):
            seeded.get_directional_totals(FlowFilter())


class TestTimeBuckets:

    def test_hourly(self, seeded):
        rows = seeded.get_time_buckets("%Y-%m-%d %H:00:00", FlowFilter())
        assert rows == [
            {"time_period": "2024-03-01 10:00:00", "total_bytes": 140},
            {"time_period": "2024-03-01 11:00:00", "total_bytes": 51},
            {"time_period": "2024-03-02 09:00:00", "total_bytes": 7},
        ]

    def test_directional(self, seeded):
        flt = FlowFilter(match=resolve_address("10.0.0.5"))
        rows = seeded.get_time_buckets("%Y-%m-%d 00:00:00", flt, directional=True)
        assert rows == [{
            "time_period": "2024-03-01 00:00:00",
            "total_bytes": 191,
            "bytes_in": 40,
            "bytes_out": 151,
        }]

    def test_directional_requires_match(self, seeded):
        with pytest.raises(ValueError):
            seeded.get_time_buckets("%Y", FlowFilter(), directional=True)
