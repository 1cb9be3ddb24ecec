"""
backend/models.py

Shared types for the ingestion write path.
Defining them here locks the contract between the decoder, the
aggregator and the repository so each stage can be tested alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


# ---------------------------------------------------------------------------
# Decoder / aggregator output
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FlowTuple:
    """One flow record as exported by nfdump, or one aggregated bucket."""

    timestamp: datetime
    """Flow start time. Bucket start once aggregated."""

    src_ip: str
    dst_ip: str

    src_port: int
    """0 for portless protocols (ICMP, GRE, ...)."""

    dst_port: int

    protocol: int
    """IANA protocol number, e.g. 6 for TCP."""

    packets: int
    bytes: int

    def __repr__(self) -> str:
        return (
            f"FlowTuple({self.timestamp:%Y-%m-%d %H:%M:%S} "
            f"{self.src_ip}:{self.src_port}→{self.dst_ip}:{self.dst_port}"
            f"/{self.protocol} pkts={self.packets} bytes={self.bytes})"
        )


# ---------------------------------------------------------------------------
# Query path
# ---------------------------------------------------------------------------

class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    INTERNAL = "internal"
    MIXED    = "mixed"
