"""
ingest/decoder.py

Converts one line of nfdump text output into a typed FlowTuple.

Design principles:
  - Pure and synchronous: no I/O beyond the input line.
  - Header, summary and blank lines are not data and yield None silently.
  - A malformed line raises DecodeLineSkipped; decode_lines() logs it and
    carries on, so one bad line never aborts the rest of a file.

Expected line layout (nfdump -o "fmt:%ts,%sa,%da,%sp,%dp,%pr,%pkt,%byt"):

    2024-03-01 10:08:32.120,  10.0.0.5,  8.8.8.8,  51514,  53,  UDP,  1,  74

Field leniency:
  timestamp        → strict, bad value skips the line
  ports / counters → permissive, bad value becomes 0
  protocol         → mnemonic or number, unknown value skips the line
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Iterator

from ..errors import DecodeLineSkipped
from ..metrics import METRICS
from ..models import FlowTuple

logger = logging.getLogger(__name__)

FIELD_DELIMITER = ","
FIELD_COUNT = 8
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

# Lines nfdump prints around the data rows
_HEADER_PREFIXES = ("Summary", "Time", "Total", "Sys:", "Date first seen")

# nfdump protocol mnemonics → IANA protocol numbers
PROTOCOL_NUMBERS: dict[str, int] = {
    "ICMP":  1,
    "TCP":   6,
    "UDP":   17,
    "GRE":   47,
    "ESP":   50,
    "AH":    51,
    "ICMP6": 58,
    "SCTP":  132,
}


def _lenient_int(raw: str) -> int:
    """Parse a numeric field, falling back to 0 like the exporter's consumers expect."""
    try:
        return int(raw)
    except ValueError:
        return 0


def protocol_number(raw: str) -> int:
    """
    Map a protocol field to its IANA number.

    Accepts a known mnemonic (case-insensitive) or a decimal string.
    Raises ValueError for anything else.
    """
    mnemonic = PROTOCOL_NUMBERS.get(raw.upper())
    if mnemonic is not None:
        return mnemonic
    return int(raw)


def is_data_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith(_HEADER_PREFIXES)


def parse_line(line: str) -> FlowTuple | None:
    """
    Parse one nfdump output line.

    Returns:
        FlowTuple for a data row, None for header/summary/blank lines.

    Raises:
        DecodeLineSkipped: wrong field count, bad timestamp, or an
        unrecognised protocol.
    """
    if not is_data_line(line):
        return None

    parts = [p.strip() for p in line.strip().split(FIELD_DELIMITER)]
    if len(parts) != FIELD_COUNT:
        raise DecodeLineSkipped(
            f"expected {FIELD_COUNT} fields, got {len(parts)}", line
        )

    ts_raw, src_ip, dst_ip, sport_raw, dport_raw, proto_raw, pkts_raw, bytes_raw = parts

    try:
        timestamp = datetime.strptime(ts_raw, TIMESTAMP_FORMAT)
    except ValueError:
        raise DecodeLineSkipped("invalid timestamp", line) from None

    try:
        protocol = protocol_number(proto_raw)
    except ValueError:
        raise DecodeLineSkipped(f"unknown protocol {proto_raw!r}", line) from None

    return FlowTuple(
        timestamp=timestamp,
        src_ip=src_ip,
        dst_ip=dst_ip,
        src_port=_lenient_int(sport_raw),
        dst_port=_lenient_int(dport_raw),
        protocol=protocol,
        packets=_lenient_int(pkts_raw),
        bytes=_lenient_int(bytes_raw),
    )


def decode_lines(lines: Iterable[str]) -> Iterator[FlowTuple]:
    """Yield a FlowTuple for every valid data line, skipping malformed ones."""
    for line in lines:
        try:
            flow = parse_line(line)
        except DecodeLineSkipped as exc:
            METRICS.lines_skipped.inc()
            logger.warning("Skipping line — %s", exc)
            continue
        if flow is None:
            continue
        METRICS.lines_decoded.inc()
        yield flow
