"""
aggregation/models.py

AggregationKey — hashable bucket + 5-tuple used as dict key by the bucketer
bucket_start   — floor-aligns a timestamp to the fixed bucket width
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import NamedTuple

from ..models import FlowTuple

BUCKET_SECONDS = 300
"""Fixed bucket width (5 minutes). Not configurable per call."""

_EPOCH = datetime(1970, 1, 1)


class AggregationKey(NamedTuple):
    """
    Identity of one logical flow inside one bucket.

    Unlike a connection-tracking key this is NOT normalised: A→B and B→A
    are different keys, since direction is inferred later at query time.
    """

    bucket_start: datetime
    src_ip: str
    dst_ip: str
    src_port: int
    dst_port: int
    protocol: int

    def __repr__(self) -> str:
        return (
            f"{self.bucket_start:%Y-%m-%d %H:%M} "
            f"{self.src_ip}:{self.src_port}"
            f"→{self.dst_ip}:{self.dst_port}"
            f"/{self.protocol}"
        )


def bucket_start(ts: datetime) -> datetime:
    """
    Truncate ts down to the start of its bucket.

        10:08:32.120 → 10:05:00
    """
    seconds = (ts.replace(tzinfo=None) - _EPOCH) // timedelta(seconds=1)
    floored = seconds - seconds % BUCKET_SECONDS
    return (_EPOCH + timedelta(seconds=floored)).replace(tzinfo=ts.tzinfo)


def make_aggregation_key(flow: FlowTuple) -> AggregationKey:
    return AggregationKey(
        bucket_start(flow.timestamp),
        flow.src_ip,
        flow.dst_ip,
        flow.src_port,
        flow.dst_port,
        flow.protocol,
    )
