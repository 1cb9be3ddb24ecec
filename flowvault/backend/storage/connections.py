"""
storage/connections.py

Read-only view of the provisioned-connection table owned by the billing side.

The query engine only needs one question answered — "which ranges are
provisioned for this address?" — so this module exposes exactly that as a
callable, keeping the engine free of any billing-schema knowledge.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Callable

from .database import Database

logger = logging.getLogger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

RangeLookup = Callable[[str], list[IPNetwork]]
"""rangesForAddress(addr) -> networks; empty when the address is unknown."""


class ConnectionRangeLookup:
    """
    Resolves an address to the distinct networks of its connections rows.

    Usage:
        lookup = ConnectionRangeLookup(db)
        lookup("10.20.0.1")   # → [IPv4Network('10.20.0.0/24')]
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def __call__(self, address: str) -> list[IPNetwork]:
        rows = self._db.execute(
            """
            SELECT DISTINCT ip_address, mask
            FROM connections
            WHERE ip_address = ?
            """,
            (address,),
        ).fetchall()

        networks: list[IPNetwork] = []
        for row in rows:
            try:
                net = ipaddress.ip_network(
                    f"{row['ip_address']}/{row['mask']}", strict=False
                )
            except ValueError as exc:
                logger.warning(
                    "Ignoring unusable connection range %s/%s: %s",
                    row["ip_address"], row["mask"], exc,
                )
                continue
            if net not in networks:
                networks.append(net)
        return networks
