"""
detection/synners.py

SynnerLedger — cumulative, decaying suspicion weight per remote address.

Catches addresses that keep a few half-open connections around for a long
time without ever crossing the per-cycle flood threshold.

Bookkeeping, once per cycle:
    quantum = poll_interval / synner_max_time

    observed address      weight += quantum
    unobserved address    weight -= quantum * forget_factor
    weight <= 0           address forgotten
    weight  > 1           address declared an "annoying synner"

The last rule applies whether or not the address was observed this cycle:
a heavy synner that goes quiet stays declared (and banned) until its weight
decays back to 1.0. An address seen on every cycle crosses 1.0 after about
synner_max_time seconds. Weight is not capped, so a long-lived synner takes
proportionally longer to drop below the threshold.

Comparisons against 1.0 and 0.0 use a small tolerance so that float
accumulation of quantum (1/30 added thirty times is not exactly 1.0)
cannot move a decision by one cycle.
"""

from __future__ import annotations

import logging
from typing import Iterable

logger = logging.getLogger(__name__)

_EPSILON = 1e-9
_FLOOD_WEIGHT = 1.0


class SynnerLedger:
    """
    Address → weight map with per-cycle increment and decay.

    Thread safety: NOT thread-safe. Owned by the poll loop.
    """

    def __init__(
        self,
        quantum: float,
        forget_factor: float,
        weights: dict[str, float] | None = None,
    ) -> None:
        if quantum <= 0:
            raise ValueError("quantum must be positive")
        if not 0.0 < forget_factor < 1.0:
            raise ValueError("forget_factor must be strictly between 0 and 1")
        self.quantum = quantum
        self.forget_factor = forget_factor
        self.weights: dict[str, float] = dict(weights or {})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(self, observed: Iterable[str]) -> list[str]:
        """
        Apply one cycle of bookkeeping.

        Args:
            observed: addresses with at least one half-open entry this cycle.

        Returns:
            Sorted addresses whose weight is above 1.0 after the update.
        """
        seen = set(observed)
        decay = self.quantum * self.forget_factor

        for ip in seen:
            self.weights[ip] = self.weights.get(ip, 0.0) + self.quantum

        forgotten: list[str] = []
        for ip in list(self.weights):
            if ip in seen:
                continue
            weight = self.weights[ip] - decay
            if weight <= _EPSILON:
                del self.weights[ip]
                forgotten.append(ip)
            else:
                self.weights[ip] = weight

        if forgotten:
            logger.debug("Forgot %d synner(s): %s", len(forgotten), forgotten)

        annoying = sorted(
            ip for ip, weight in self.weights.items()
            if weight > _FLOOD_WEIGHT + _EPSILON
        )
        for ip in annoying:
            logger.debug("Synner %s weight=%.4f above %.1f", ip, self.weights[ip], _FLOOD_WEIGHT)
        return annoying

    def get(self, ip: str) -> float:
        """Current weight, 0.0 for unknown addresses."""
        return self.weights.get(ip, 0.0)

    def __contains__(self, ip: object) -> bool:
        return ip in self.weights

    def __len__(self) -> int:
        return len(self.weights)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"SynnerLedger(tracked={len(self.weights)} "
            f"quantum={self.quantum:.4f} forget={self.forget_factor})"
        )
