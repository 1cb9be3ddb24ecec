"""
query/__init__.py

Public API for the query sub-package.
"""

from .direction import Attribution, infer_direction
from .engine import FlowQueryEngine
from .models import AggregateBucket, FlowHit, SearchResult
from .resolver import MatchKind, MatchStrategy, resolve_address

__all__ = [
    "AggregateBucket",
    "Attribution",
    "FlowHit",
    "FlowQueryEngine",
    "MatchKind",
    "MatchStrategy",
    "SearchResult",
    "infer_direction",
    "resolve_address",
]
