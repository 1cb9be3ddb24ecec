"""
backend/metrics.py

Lightweight thread-safe counters for the ingestion pipeline.
No external dependencies — uses Python's threading.Lock.

Usage:
    from flowvault.backend.metrics import METRICS
    METRICS.files_processed.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all ingestion counters."""

    def __init__(self) -> None:
        self.passes_completed: Counter = Counter()
        """Full directory walks finished."""

        self.files_processed: Counter = Counter()
        """Files aggregated, persisted and marked."""

        self.files_skipped: Counter = Counter()
        """Files ignored because a processed-file marker already exists."""

        self.files_failed: Counter = Counter()
        """Files left unmarked after an extraction or persist failure."""

        self.lines_decoded: Counter = Counter()
        """Output lines that produced a FlowTuple."""

        self.lines_skipped: Counter = Counter()
        """Malformed output lines dropped by the decoder."""

        self.flows_written: Counter = Counter()
        """Aggregated rows committed to the flows table."""

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return {
            name: attr.value
            for name, attr in vars(self).items()
            if isinstance(attr, Counter)
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Module-level singleton, import from here everywhere
METRICS = Metrics()
