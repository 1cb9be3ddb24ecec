"""
query/direction.py

Per-row traffic direction relative to the queried address or range.

    src matches, dst does not          → outgoing  (all bytes → out)
    dst matches, src does not          → incoming  (all bytes → in)
    both match and query is a range    → internal  (split evenly)
    anything else                      → mixed     (split evenly)

Even splits use floor division on each half, so an odd byte count loses
one byte. FlowRepository.get_directional_totals() encodes the same table
in SQL; the two must stay in lockstep.
"""

from __future__ import annotations

from typing import NamedTuple

from ..models import Direction
from .resolver import MatchStrategy


class Attribution(NamedTuple):
    direction: Direction
    bytes_in: int
    bytes_out: int


def infer_direction(
    src_ip: str,
    dst_ip: str,
    byte_count: int,
    match: MatchStrategy,
) -> Attribution:
    src_in = match.matches(src_ip)
    dst_in = match.matches(dst_ip)

    if src_in and not dst_in:
        return Attribution(Direction.OUTGOING, 0, byte_count)
    if dst_in and not src_in:
        return Attribution(Direction.INCOMING, byte_count, 0)

    half = byte_count // 2
    if src_in and dst_in and match.is_range:
        return Attribution(Direction.INTERNAL, half, half)
    return Attribution(Direction.MIXED, half, half)
