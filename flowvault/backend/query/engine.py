"""
query/engine.py

FlowQueryEngine — read-only answers over the flow store.

search()
    All flows touching an address, CIDR, wildcard or provisioned range,
    newest first, one page at a time. Each row carries an inferred
    direction; totals are recomputed in the store over the WHOLE filtered
    set, never summed from the fetched page.

aggregate()
    Byte totals per minute / hour / day / month between two RFC3339 instants.

aggregate_by_address()
    Same buckets restricted to one address expression and split into in/out
    with the same direction rules as search().

The engine holds no mutable state and is safe to share between requests.
Input errors raise QueryInputError subclasses; pagination values are
coerced to defaults instead.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

from ..errors import InvalidGranularity, InvalidTimeRange
from ..storage.connections import RangeLookup
from ..storage.database import TIMESTAMP_SQL_FORMAT
from ..storage.repository import FlowFilter, FlowRepository
from .direction import infer_direction
from .models import AggregateBucket, FlowHit, SearchResult
from .resolver import MatchStrategy, resolve_address

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 500

GRANULARITY_FORMATS: dict[str, str] = {
    "minute": "%Y-%m-%d %H:%M:00",
    "hour":   "%Y-%m-%d %H:00:00",
    "day":    "%Y-%m-%d 00:00:00",
    "month":  "%Y-%m-01 00:00:00",
}

_DATE_FORMAT = "%Y-%m-%d"

_RFC3339 = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt]"
    r"(?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


# ---------------------------------------------------------------------------
# Input parsing helpers
# ---------------------------------------------------------------------------

def normalise_page(
    page: int | None,
    limit: int | None,
    default_limit: int = DEFAULT_PAGE_SIZE,
    max_limit: int = MAX_PAGE_SIZE,
) -> tuple[int, int]:
    """Coerce page/limit: non-positive → defaults, oversize limit → capped."""
    page = page if page is not None and page > 0 else 1
    limit = limit if limit is not None and limit > 0 else default_limit
    return page, min(limit, max_limit)


def parse_date(value: str, name: str) -> datetime:
    try:
        return datetime.strptime(value.strip(), _DATE_FORMAT)
    except ValueError:
        raise InvalidTimeRange(
            f"Invalid {name} date {value!r}: expected YYYY-MM-DD"
        ) from None


def parse_rfc3339(value: str | None, name: str) -> datetime:
    """
    Parse an RFC3339 instant into a naive UTC datetime.

    Only the full form is accepted: date, 'T', time with seconds, optional
    fraction and a mandatory 'Z' or +HH:MM offset. Stored timestamps are
    naive and treated as UTC, so the offset is applied and then dropped.
    """
    if not value or not value.strip():
        raise InvalidTimeRange(f"{name} is required")
    m = _RFC3339.match(value.strip())
    if m is None:
        raise InvalidTimeRange(
            f"Invalid {name} format {value!r}: expected RFC3339, "
            "e.g. 2024-03-01T10:00:00Z"
        )
    try:
        ts = datetime.strptime(f"{m['date']}T{m['time']}", "%Y-%m-%dT%H:%M:%S")
        if m["fraction"]:
            ts = ts.replace(microsecond=int(m["fraction"][:6].ljust(6, "0")))
        offset = m["offset"].upper()
        if offset == "Z":
            tz = timezone.utc
        else:
            sign = -1 if offset[0] == "-" else 1
            hours, minutes = int(offset[1:3]), int(offset[4:6])
            tz = timezone(sign * timedelta(hours=hours, minutes=minutes))
    except ValueError:
        raise InvalidTimeRange(f"Invalid {name} value {value!r}") from None
    return ts.replace(tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)


def _ceil_second(ts: datetime) -> datetime:
    if ts.microsecond:
        return ts.replace(microsecond=0) + timedelta(seconds=1)
    return ts


def _parse_stored(ts: str) -> datetime:
    return datetime.strptime(ts, TIMESTAMP_SQL_FORMAT)


class FlowQueryEngine:
    """
    Args:
        repository:         Flow store access layer.
        ranges_for_address: Provisioned-range lookup used by resolution
                            strategy 4; None disables range expansion.
        default_page_size:  Page size used when the caller gives none.
        max_page_size:      Upper bound for caller-supplied page sizes.
    """

    def __init__(
        self,
        repository: FlowRepository,
        ranges_for_address: RangeLookup | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._repo = repository
        self._ranges_for_address = ranges_for_address
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    def resolve(self, ip: str | None, mask: str | int | None = None) -> MatchStrategy:
        return resolve_address(ip, mask, self._ranges_for_address)

    def search(
        self,
        ip: str | None,
        mask: str | int | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        page: int | None = 1,
        limit: int | None = None,
    ) -> SearchResult:
        """
        Page through every flow touching the resolved address expression.

        Args:
            ip:        Address, CIDR, or wildcard expression.
            mask:      Optional prefix length; takes precedence over a CIDR literal.
            date_from: Inclusive start day, YYYY-MM-DD.
            date_to:   Inclusive end day, YYYY-MM-DD.
            page:      1-based page number.
            limit:     Page size.
        """
        match = self.resolve(ip, mask)
        since = parse_date(date_from, "from") if date_from else None
        until = parse_date(date_to, "to") + timedelta(days=1) if date_to else None
        if since is not None and until is not None and until <= since:
            raise InvalidTimeRange("'to' date is before 'from' date")

        page, limit = normalise_page(
            page, limit, self._default_page_size, self._max_page_size
        )
        flt = FlowFilter(match=match, since=since, until=until)

        total_records = self._repo.count_flows(flt)
        totals = self._repo.get_directional_totals(flt)
        rows = self._repo.get_flows(flt, limit=limit, offset=(page - 1) * limit)

        logger.debug(
            "search %s page=%d limit=%d → %d/%d rows",
            match.describe(), page, limit, len(rows), total_records,
        )
        return SearchResult(
            flows=[self._to_hit(row, match) for row in rows],
            total_records=total_records,
            total_bytes_in=totals["total_bytes_in"],
            total_bytes_out=totals["total_bytes_out"],
            total_traffic=totals["total_traffic"],
            page=page,
            limit=limit,
            total_pages=-(-total_records // limit),
            match_kind=match.kind.value,
        )

    @staticmethod
    def _to_hit(row: dict, match: MatchStrategy) -> FlowHit:
        attribution = infer_direction(row["src_ip"], row["dst_ip"], row["bytes"], match)
        return FlowHit(
            id=row["id"],
            timestamp=_parse_stored(row["timestamp"]),
            src_ip=row["src_ip"],
            dst_ip=row["dst_ip"],
            src_port=row["src_port"],
            dst_port=row["dst_port"],
            protocol=row["protocol"],
            packets=row["packets"],
            bytes=row["bytes"],
            direction=attribution.direction,
            bytes_in=attribution.bytes_in,
            bytes_out=attribution.bytes_out,
        )

    # ------------------------------------------------------------------
    # aggregate
    # ------------------------------------------------------------------

    def aggregate(
        self,
        start_time: str | None,
        end_time: str | None,
        granularity: str | None,
    ) -> list[AggregateBucket]:
        """Total bytes per granularity bucket in [start_time, end_time]."""
        bucket_format, flt = self._aggregate_filter(start_time, end_time, granularity)
        rows = self._repo.get_time_buckets(bucket_format, flt)
        return [
            AggregateBucket(
                time_period=_parse_stored(r["time_period"]),
                total_bytes=r["total_bytes"],
            )
            for r in rows
        ]

    def aggregate_by_address(
        self,
        ip: str | None,
        start_time: str | None,
        end_time: str | None,
        granularity: str | None,
        mask: str | int | None = None,
    ) -> list[AggregateBucket]:
        """Per-bucket totals for one address expression, split into in/out."""
        match = self.resolve(ip, mask)
        bucket_format, flt = self._aggregate_filter(
            start_time, end_time, granularity, match
        )
        rows = self._repo.get_time_buckets(bucket_format, flt, directional=True)
        return [
            AggregateBucket(
                time_period=_parse_stored(r["time_period"]),
                total_bytes=r["total_bytes"],
                bytes_in=r["bytes_in"],
                bytes_out=r["bytes_out"],
            )
            for r in rows
        ]

    @staticmethod
    def _aggregate_filter(
        start_time: str | None,
        end_time: str | None,
        granularity: str | None,
        match: MatchStrategy | None = None,
    ) -> tuple[str, FlowFilter]:
        token = (granularity or "").strip().lower()
        bucket_format = GRANULARITY_FORMATS.get(token)
        if bucket_format is None:
            raise InvalidGranularity(
                f"Invalid granularity {granularity!r}: expected one of "
                + ", ".join(GRANULARITY_FORMATS)
            )

        start = parse_rfc3339(start_time, "start_time")
        end = parse_rfc3339(end_time, "end_time")
        if end < start:
            raise InvalidTimeRange("end_time is before start_time")

        # [start, end] inclusive at second precision
        flt = FlowFilter(
            match=match,
            since=_ceil_second(start),
            until=end.replace(microsecond=0) + timedelta(seconds=1),
        )
        return bucket_format, flt
