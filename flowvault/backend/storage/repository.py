"""
storage/repository.py

FlowRepository — every SQL statement that touches flows / processed_files.

Write side:
  persist_file() inserts one file's aggregated rows AND its processed-file
  marker in a single transaction. Either both land or neither does.

Read side:
  All query methods take a FlowFilter. The filter carries a match object
  (anything exposing sql_clause() / column_predicate()) plus optional time
  bounds, and is rendered into a WHERE clause with named parameters so the
  same predicate can appear several times in one statement.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Protocol

from ..errors import PersistFailed
from ..models import FlowTuple
from .database import TIMESTAMP_SQL_FORMAT, Database

logger = logging.getLogger(__name__)


class SqlMatch(Protocol):
    """The part of an address match the repository needs to build SQL."""

    def column_predicate(self, column: str) -> tuple[str, dict[str, Any]]: ...

    def sql_clause(self) -> tuple[str, dict[str, Any]]: ...


@dataclass(frozen=True)
class FlowFilter:
    """Row selection for read queries. Bounds are half-open: [since, until)."""

    match: SqlMatch | None = None
    since: datetime | None = None
    until: datetime | None = None


def format_timestamp(ts: datetime) -> str:
    return ts.strftime(TIMESTAMP_SQL_FORMAT)


class FlowRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    # ==================================================================
    # Write methods
    # ==================================================================

    def is_file_processed(self, file_name: str) -> bool:
        row = self._db.execute(
            "SELECT EXISTS(SELECT 1 FROM processed_files WHERE file_name = ?)",
            (file_name,),
        ).fetchone()
        return bool(row[0])

    def persist_file(self, file_name: str, flows: Iterable[FlowTuple]) -> int:
        """
        Insert aggregated flows and mark file_name processed, atomically.

        Returns:
            Number of flow rows written.

        Raises:
            PersistFailed: the transaction was rolled back; nothing was
            written and the file stays unmarked.
        """
        rows = [
            (
                format_timestamp(f.timestamp),
                f.src_ip,
                f.dst_ip,
                f.src_port,
                f.dst_port,
                f.protocol,
                f.packets,
                f.bytes,
            )
            for f in flows
        ]
        try:
            self._db.executemany(
                """
                INSERT INTO flows (
                    timestamp, src_ip, dst_ip, src_port, dst_port,
                    protocol, packets, bytes
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            self._db.execute(
                "INSERT INTO processed_files (file_name) VALUES (?)",
                (file_name,),
            )
            self._db.commit()
        except sqlite3.Error as exc:
            self._db.rollback()
            logger.error("persist_file rolled back for %s: %s", file_name, exc)
            raise PersistFailed(file_name, str(exc)) from exc

        logger.debug("Committed %d rows + marker for %s", len(rows), file_name)
        return len(rows)

    # ==================================================================
    # Read methods
    # ==================================================================

    def processed_file_count(self) -> int:
        row = self._db.execute("SELECT COUNT(*) FROM processed_files").fetchone()
        return row[0] if row else 0

    def last_processed_file(self) -> dict | None:
        row = self._db.execute(
            """
            SELECT file_name, processed_at FROM processed_files
            ORDER BY id DESC LIMIT 1
            """
        ).fetchone()
        return dict(row) if row else None

    def count_flows(self, flt: FlowFilter) -> int:
        where, params = self._build_where(flt)
        row = self._db.execute(
            f"SELECT COUNT(*) FROM flows {where}", params
        ).fetchone()
        return row[0] if row else 0

    def get_flows(self, flt: FlowFilter, limit: int, offset: int) -> list[dict]:
        """One page of flows, newest bucket first."""
        where, params = self._build_where(flt)
        params.update(limit=limit, offset=offset)
        rows = self._db.execute(
            f"""
            SELECT id, timestamp, src_ip, dst_ip, src_port, dst_port,
                   protocol, packets, bytes
            FROM flows
            {where}
            ORDER BY timestamp DESC, id DESC
            LIMIT :limit OFFSET :offset
            """,
            params,
        ).fetchall()
        return [dict(r) for r in rows]

    def get_directional_totals(self, flt: FlowFilter) -> dict:
        """
        Whole-result-set byte totals, attributed in/out inside the store.

        Requires flt.match. Uses the same rules as per-row direction
        inference: one-sided matches go wholly to in or out, everything
        else is split evenly (floor).
        """
        if flt.match is None:
            raise ValueError("directional totals need an address match")
        where, params = self._build_where(flt)
        in_expr, out_expr, dir_params = self._direction_exprs(flt.match)
        params.update(dir_params)
        row = self._db.execute(
            f"""
            SELECT
                COALESCE(SUM({in_expr}), 0)  AS total_bytes_in,
                COALESCE(SUM({out_expr}), 0) AS total_bytes_out,
                COALESCE(SUM(bytes), 0)      AS total_traffic
            FROM flows
            {where}
            """,
            params,
        ).fetchone()
        return dict(row)

    def get_time_buckets(
        self,
        bucket_format: str,
        flt: FlowFilter,
        directional: bool = False,
    ) -> list[dict]:
        """
        Byte totals grouped by strftime(bucket_format, timestamp), ascending.

        With directional=True (requires flt.match) each bucket also carries
        bytes_in / bytes_out.
        """
        where, params = self._build_where(flt)
        params["bucket_format"] = bucket_format
        extra = ""
        if directional:
            if flt.match is None:
                raise ValueError("directional buckets need an address match")
            in_expr, out_expr, dir_params = self._direction_exprs(flt.match)
            params.update(dir_params)
            extra = (
                f", COALESCE(SUM({in_expr}), 0) AS bytes_in"
                f", COALESCE(SUM({out_expr}), 0) AS bytes_out"
            )
        rows = self._db.execute(
            f"""
            SELECT strftime(:bucket_format, timestamp) AS time_period,
                   COALESCE(SUM(bytes), 0) AS total_bytes
                   {extra}
            FROM flows
            {where}
            GROUP BY time_period
            ORDER BY time_period
            """,
            params,
        ).fetchall()
        return [dict(r) for r in rows]

    # ==================================================================
    # Internal helpers
    # ==================================================================

    @staticmethod
    def _build_where(flt: FlowFilter) -> tuple[str, dict[str, Any]]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        if flt.match is not None:
            clause, match_params = flt.match.sql_clause()
            clauses.append(clause)
            params.update(match_params)
        if flt.since is not None:
            clauses.append("timestamp >= :since")
            params["since"] = format_timestamp(flt.since)
        if flt.until is not None:
            clauses.append("timestamp < :until")
            params["until"] = format_timestamp(flt.until)
        where = "WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    @staticmethod
    def _direction_exprs(match: SqlMatch) -> tuple[str, str, dict[str, Any]]:
        src, src_params = match.column_predicate("src_ip")
        dst, dst_params = match.column_predicate("dst_ip")
        in_expr = (
            f"CASE WHEN ({dst}) AND NOT ({src}) THEN bytes"
            f" WHEN ({src}) AND NOT ({dst}) THEN 0"
            f" ELSE bytes / 2 END"
        )
        out_expr = (
            f"CASE WHEN ({src}) AND NOT ({dst}) THEN bytes"
            f" WHEN ({dst}) AND NOT ({src}) THEN 0"
            f" ELSE bytes / 2 END"
        )
        return in_expr, out_expr, {**src_params, **dst_params}
