"""
query/resolver.py

Turns a caller's address expression into a MatchStrategy, once per query,
before any row is read.

Resolution precedence (first applicable wins):
  1. explicit mask parameter       → CIDR   ip/mask
  2. expression contains '/'       → CIDR   literal
  3. expression contains '*'       → WILDCARD  (SQL LIKE, '*' → '%')
  4. plain address with provisioned ranges → RANGES  (OR over every range)
  5. plain address                 → EXACT  (src or dst equality)

When both a mask parameter and a CIDR literal are supplied the mask wins.

A MatchStrategy answers the same question two ways that must always agree:
  - column_predicate() / sql_clause(): SQL evaluated inside the store
  - matches(): Python evaluated on rows already fetched
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import InvalidAddressExpression, InvalidCIDR, InvalidMask
from ..storage.connections import IPNetwork, RangeLookup
from ..storage.database import ip_in_network

_COLUMNS = ("src_ip", "dst_ip")
_WILDCARD_CHARS = re.compile(r"^[0-9A-Fa-f.:*]+$")


class MatchKind(str, Enum):
    CIDR     = "cidr"
    WILDCARD = "wildcard"
    RANGES   = "ranges"
    EXACT    = "exact"


@dataclass(frozen=True)
class MatchStrategy:
    """A resolved address predicate over the src_ip / dst_ip columns."""

    kind: MatchKind
    expression: str
    """The address as the caller gave it (before resolution)."""

    networks: tuple[IPNetwork, ...] = ()
    """CIDR / RANGES: every network to test for containment."""

    pattern: str = ""
    """WILDCARD: SQL LIKE pattern."""

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def is_range(self) -> bool:
        """True when the match can cover more than one address."""
        if self.kind is MatchKind.EXACT:
            return False
        if self.kind is MatchKind.WILDCARD:
            return True
        return sum(net.num_addresses for net in self.networks) > 1

    # ------------------------------------------------------------------
    # Python side
    # ------------------------------------------------------------------

    def matches(self, ip: str) -> bool:
        if self.kind is MatchKind.EXACT:
            return ip == self.expression
        if self.kind is MatchKind.WILDCARD:
            return _like_to_regex(self.pattern).fullmatch(ip) is not None
        return any(ip_in_network(ip, str(net)) for net in self.networks)

    # ------------------------------------------------------------------
    # SQL side
    # ------------------------------------------------------------------

    def column_predicate(self, column: str) -> tuple[str, dict[str, Any]]:
        """SQL boolean expression testing one column, with named params."""
        if column not in _COLUMNS:
            raise ValueError(f"unsupported column {column!r}")

        if self.kind is MatchKind.EXACT:
            return f"{column} = :match_ip", {"match_ip": self.expression}
        if self.kind is MatchKind.WILDCARD:
            return f"{column} LIKE :match_pattern", {"match_pattern": self.pattern}

        parts: list[str] = []
        params: dict[str, Any] = {}
        for i, net in enumerate(self.networks):
            parts.append(f"ip_in_network({column}, :match_net{i})")
            params[f"match_net{i}"] = str(net)
        return "(" + " OR ".join(parts) + ")", params

    def sql_clause(self) -> tuple[str, dict[str, Any]]:
        """Rows where either endpoint matches."""
        src, src_params = self.column_predicate("src_ip")
        dst, dst_params = self.column_predicate("dst_ip")
        return f"({src} OR {dst})", {**src_params, **dst_params}

    def describe(self) -> str:
        if self.kind is MatchKind.WILDCARD:
            return f"wildcard {self.expression}"
        if self.kind is MatchKind.EXACT:
            return f"address {self.expression}"
        return f"{self.kind.value} " + ", ".join(str(n) for n in self.networks)


def _like_to_regex(pattern: str) -> re.Pattern[str]:
    # LIKE is case-insensitive for ASCII in SQLite
    return re.compile(
        "".join(".*" if ch == "%" else re.escape(ch) for ch in pattern),
        re.IGNORECASE,
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _parse_mask(mask: str | int, max_prefix: int) -> int:
    try:
        value = int(str(mask).strip())
    except ValueError:
        raise InvalidMask(f"Invalid mask {mask!r}: must be an integer") from None
    if not 0 <= value <= max_prefix:
        raise InvalidMask(f"Invalid mask {value}: must be between 0 and {max_prefix}")
    return value


def _parse_address(address: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    try:
        return ipaddress.ip_address(address)
    except ValueError:
        raise InvalidAddressExpression(f"Invalid IP address {address!r}") from None


def resolve_address(
    expression: str | None,
    mask: str | int | None = None,
    ranges_for_address: RangeLookup | None = None,
) -> MatchStrategy:
    """
    Resolve an address expression into a MatchStrategy.

    Args:
        expression:         Address, CIDR, or wildcard pattern.
        mask:               Optional prefix length applied to expression.
        ranges_for_address: Lookup of provisioned ranges for a plain address.

    Raises:
        InvalidAddressExpression, InvalidMask, InvalidCIDR
    """
    expr = (expression or "").strip()
    if not expr:
        raise InvalidAddressExpression("IP address is required")

    has_mask = mask is not None and str(mask).strip() != ""

    # 1. explicit mask
    if has_mask:
        base = expr.split("/", 1)[0]
        addr = _parse_address(base)
        prefix = _parse_mask(mask, addr.max_prefixlen)
        net = ipaddress.ip_network(f"{addr}/{prefix}", strict=False)
        return MatchStrategy(MatchKind.CIDR, expr, networks=(net,))

    # 2. CIDR literal
    if "/" in expr:
        try:
            net = ipaddress.ip_network(expr, strict=False)
        except ValueError as exc:
            raise InvalidCIDR(f"Invalid CIDR notation {expr!r}: {exc}") from None
        return MatchStrategy(MatchKind.CIDR, expr, networks=(net,))

    # 3. wildcard
    if "*" in expr:
        if not _WILDCARD_CHARS.match(expr):
            raise InvalidAddressExpression(f"Invalid wildcard pattern {expr!r}")
        return MatchStrategy(MatchKind.WILDCARD, expr, pattern=expr.replace("*", "%"))

    # 4. / 5. plain address
    addr = _parse_address(expr)
    if ranges_for_address is not None:
        networks = tuple(ranges_for_address(str(addr)))
        if networks:
            return MatchStrategy(MatchKind.RANGES, expr, networks=networks)
    return MatchStrategy(MatchKind.EXACT, expr)
