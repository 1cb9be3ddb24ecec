"""
aggregation/bucketer.py

Compacts the decoded flows of ONE capture file into fixed 5-minute buckets.

Algorithm:
  - For each flow, floor its timestamp to the bucket and build an
    AggregationKey (bucket, src, dst, sport, dport, proto).
  - Known key   → add packets and bytes to the accumulator.
  - Unknown key → seed a new accumulator stamped with the bucket start.

The key → accumulator map is local to a single call. Summation is
commutative and associative, so input order never changes the totals.
Output order is unspecified.
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..models import FlowTuple
from .models import AggregationKey, make_aggregation_key

logger = logging.getLogger(__name__)


def aggregate_flows(flows: Iterable[FlowTuple]) -> list[FlowTuple]:
    """
    Merge flows sharing a bucket and 5-tuple.

    Returns:
        One FlowTuple per distinct AggregationKey; empty for empty input.
    """
    # key → [packets, bytes]
    buckets: dict[AggregationKey, list[int]] = {}
    raw_count = 0

    for flow in flows:
        raw_count += 1
        key = make_aggregation_key(flow)
        acc = buckets.get(key)
        if acc is None:
            buckets[key] = [flow.packets, flow.bytes]
        else:
            acc[0] += flow.packets
            acc[1] += flow.bytes

    if raw_count == 0:
        logger.debug("No flows to aggregate")
        return []

    logger.info(
        "Aggregated %d raw flows into %d 5-minute buckets", raw_count, len(buckets)
    )
    return [
        FlowTuple(
            timestamp=key.bucket_start,
            src_ip=key.src_ip,
            dst_ip=key.dst_ip,
            src_port=key.src_port,
            dst_port=key.dst_port,
            protocol=key.protocol,
            packets=packets,
            bytes=byte_count,
        )
        for key, (packets, byte_count) in buckets.items()
    ]
