"""
query/models.py

Result types returned by FlowQueryEngine.

FlowHit         — one persisted flow plus its inferred direction
SearchResult    — one page of hits plus whole-result-set totals
AggregateBucket — byte total for one granularity bucket
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..models import Direction


@dataclass(slots=True)
class FlowHit:
    id: int
    timestamp: datetime
    src_ip: str
    dst_ip: str
    src_port: int
    dst_port: int
    protocol: int
    packets: int
    bytes: int
    direction: Direction
    bytes_in: int
    bytes_out: int


@dataclass
class SearchResult:
    flows: list[FlowHit] = field(default_factory=list)
    total_records: int = 0
    total_bytes_in: int = 0
    total_bytes_out: int = 0
    total_traffic: int = 0
    page: int = 1
    limit: int = 25
    total_pages: int = 0

    match_kind: str = ""
    """Which resolution strategy answered the query, e.g. 'cidr'."""


@dataclass(slots=True)
class AggregateBucket:
    time_period: datetime
    total_bytes: int
    bytes_in: int | None = None
    """Only set by the by-address variant."""

    bytes_out: int | None = None
