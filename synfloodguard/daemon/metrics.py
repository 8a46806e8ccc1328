"""
daemon/metrics.py

Per-process counters for the poll loop.
One DaemonMetrics instance lives on the DaemonContext and is only touched
from the loop thread; signal handlers never increment counters.

Usage:
    ctx.metrics.bans_added.inc()
    print(ctx.metrics.as_dict())
"""


class Counter:
    """Monotonic integer count, reset only by reset_all()."""

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value = 0

    def inc(self, amount: int = 1) -> None:
        self._value += amount

    def reset(self) -> None:
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class DaemonMetrics:
    """All counters for one daemon run."""

    def __init__(self) -> None:
        # --- Loop ---
        self.cycles_completed: Counter = Counter()
        """Cycles that read a snapshot and ran the ledgers."""

        self.cycles_skipped: Counter = Counter()
        """Cycles abandoned because the snapshot source was unreadable."""

        self.half_open_seen: Counter = Counter()
        """SYN_RECV lines counted across all cycles."""

        # --- Bans ---
        self.bans_added: Counter = Counter()
        self.bans_refreshed: Counter = Counter()
        self.bans_expired: Counter = Counter()

        # --- Failures ---
        self.gateway_failures: Counter = Counter()
        """Ledger mutations not applied because the enforcement tool failed."""

        self.state_write_failures: Counter = Counter()

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
