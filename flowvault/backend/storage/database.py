"""
storage/database.py

SQLite connection and schema initialisation for the FlowVault flow store.

Design decisions:
  - WAL journal mode: the ingestion pass writes through its own connection
    while API requests keep reading through another.
  - check_same_thread=False: the connection is created on the main thread
    but may be driven from asyncio.to_thread() workers. Each connection is
    only ever used by one thread at a time.
  - busy_timeout=5000ms: instead of raising SQLITE_BUSY immediately, SQLite
    will spin-wait up to 5 seconds for the writer to finish.
  - ip_in_network(ip, cidr) is registered as a SQL function so range
    containment is evaluated inside the store, next to COUNT/SUM.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import sqlite3
from functools import lru_cache

logger = logging.getLogger(__name__)

TIMESTAMP_SQL_FORMAT = "%Y-%m-%d %H:%M:%S"
"""Layout of flows.timestamp — the shape SQLite's strftime() understands."""


# ---------------------------------------------------------------------------
# SQL functions
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1024)
def _network(cidr: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    return ipaddress.ip_network(cidr, strict=False)


@lru_cache(maxsize=65536)
def _address(ip: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    return ipaddress.ip_address(ip)


def ip_in_network(ip: str | None, cidr: str | None) -> int:
    """
    1 if ip lies inside cidr (inclusive of the network's own bounds), else 0.

    Unparseable values never match; a v4 address never matches a v6 network.
    """
    if not ip or not cidr:
        return 0
    try:
        return int(_address(ip) in _network(cidr))
    except ValueError:
        return 0


class Database:
    """
    Thin wrapper around a sqlite3 connection.

    Usage:
        db = Database("data/flows.db")
        db.init_schema()
        # ... use db.conn directly or pass db to FlowRepository ...
        db.close()
    """

    def __init__(self, db_path: str = "data/flows.db") -> None:
        self.db_path = db_path
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row  # rows behave like dicts
        self._configure()
        logger.info("Database opened — path=%r", db_path)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _configure(self) -> None:
        """Apply PRAGMAs and register SQL functions."""
        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA busy_timeout=5000")
        cur.execute("PRAGMA synchronous=NORMAL")  # safe with WAL
        self.conn.commit()
        self.conn.create_function("ip_in_network", 2, ip_in_network, deterministic=True)

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        """Create all tables and indexes if they don't already exist."""
        cur = self.conn.cursor()

        cur.executescript("""
            CREATE TABLE IF NOT EXISTS flows (
                id        INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT    NOT NULL,
                src_ip    TEXT    NOT NULL,
                dst_ip    TEXT    NOT NULL,
                src_port  INTEGER NOT NULL,
                dst_port  INTEGER NOT NULL,
                protocol  INTEGER NOT NULL,
                packets   INTEGER NOT NULL,
                bytes     INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS processed_files (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                file_name    TEXT NOT NULL UNIQUE,
                processed_at TEXT NOT NULL DEFAULT (datetime('now'))
            );

            -- Provisioned client ranges. Owned by the billing side;
            -- read-only for the flow core.
            CREATE TABLE IF NOT EXISTS connections (
                id         INTEGER PRIMARY KEY AUTOINCREMENT,
                ip_address TEXT    NOT NULL,
                mask       INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_flows_timestamp
                ON flows(timestamp DESC);
            CREATE INDEX IF NOT EXISTS idx_flows_src_ip
                ON flows(src_ip);
            CREATE INDEX IF NOT EXISTS idx_flows_dst_ip
                ON flows(dst_ip);
            CREATE INDEX IF NOT EXISTS idx_connections_ip_address
                ON connections(ip_address);
        """)
        self.conn.commit()
        logger.info("Schema initialised")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Flush and close the SQLite connection."""
        try:
            self.conn.commit()
            self.conn.close()
            logger.info("Database closed — path=%r", self.db_path)
        except sqlite3.Error as exc:
            logger.warning("Error closing database: %s", exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        """Execute a single parameterized statement."""
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list) -> None:
        """Execute a parameterized statement against a list of parameter tuples."""
        self.conn.executemany(sql, params_list)

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()
