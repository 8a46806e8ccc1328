"""
detection/flooders.py

FlooderLedger — addresses currently banned in the enforcement set, and
the time each ban was last confirmed.

Rules:
  - declare(): first declaration calls gateway.add(); the record is only
    created once the add succeeded. Later declarations just refresh the
    timestamp, so add() is never repeated within a ban window.
  - expire(): a ban older than ban_timeout is lifted with test-then-delete.
    An address already missing from the set (operator flush, reboot) is
    dropped without a delete call. A failed test or delete keeps the
    record; the next cycle retries.
  - reconcile(): at startup, re-add persisted bans that are missing from
    the set so enforcement matches the ledger again. Bans that already
    outlived ban_timeout are not re-added.

The ledger is advisory: the set is the enforcement point and may drift
while gateway calls fail.
"""

from __future__ import annotations

import logging
from enum import Enum

from ..blacklist.base import BlacklistGateway, Membership
from ..metrics import DaemonMetrics

logger = logging.getLogger(__name__)


class BanOutcome(str, Enum):
    ADDED     = "ADDED"
    REFRESHED = "REFRESHED"
    FAILED    = "FAILED"


class FlooderLedger:
    """
    Address → banned-since timestamp, kept consistent with a gateway.

    Thread safety: NOT thread-safe. Owned by the poll loop.
    """

    def __init__(
        self,
        gateway: BlacklistGateway,
        ban_timeout: float,
        banned: dict[str, float] | None = None,
        metrics: DaemonMetrics | None = None,
    ) -> None:
        self.gateway = gateway
        self.ban_timeout = ban_timeout
        self.banned: dict[str, float] = dict(banned or {})
        self._metrics = metrics

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def declare(self, ip: str, now: float) -> BanOutcome:
        """Record a flood declaration for ip at time now."""
        if ip in self.banned:
            self.banned[ip] = now
            self._inc("bans_refreshed")
            logger.debug("Ban on %s extended", ip)
            return BanOutcome.REFRESHED

        if not self.gateway.add(ip):
            self._inc("gateway_failures")
            logger.error(
                "Could not add %s to set %r — will retry next cycle",
                ip, self.gateway.set_name,
            )
            return BanOutcome.FAILED

        self.banned[ip] = now
        self._inc("bans_added")
        logger.warning("BANNED %s (set=%r)", ip, self.gateway.set_name)
        return BanOutcome.ADDED

    def expire(self, now: float) -> list[str]:
        """
        Lift every ban older than ban_timeout.

        Returns the sorted addresses whose record was dropped.
        """
        lifted: list[str] = []
        stale = [ip for ip, since in self.banned.items() if now - since > self.ban_timeout]

        for ip in sorted(stale):
            membership = self.gateway.test(ip)
            if membership is Membership.ERROR:
                self._inc("gateway_failures")
                logger.error("Could not test %s in set %r — keeping ban record", ip, self.gateway.set_name)
                continue

            if membership is Membership.PRESENT and not self.gateway.remove(ip):
                self._inc("gateway_failures")
                logger.error("Could not remove %s from set %r — keeping ban record", ip, self.gateway.set_name)
                continue

            if membership is Membership.ABSENT:
                logger.info("Ban on %s expired; already absent from set %r", ip, self.gateway.set_name)
            else:
                logger.info("UNBANNED %s (set=%r)", ip, self.gateway.set_name)
            del self.banned[ip]
            self._inc("bans_expired")
            lifted.append(ip)

        return lifted

    def reconcile(self, now: float | None = None) -> list[str]:
        """
        Re-add persisted bans missing from the set.

        Records that cannot be re-added are dropped so that the next flood
        declaration goes through add() again. When now is given, bans already
        older than ban_timeout are left for the next expire() instead.
        Returns re-added addresses.
        """
        restored: list[str] = []
        for ip in sorted(self.banned):
            if now is not None and now - self.banned[ip] > self.ban_timeout:
                logger.debug("Not restoring %s: ban already past its timeout", ip)
                continue
            membership = self.gateway.test(ip)
            if membership is not Membership.ABSENT:
                continue
            logger.warning("%s is in the ledger but not in set %r — re-adding", ip, self.gateway.set_name)
            if self.gateway.add(ip):
                restored.append(ip)
            else:
                self._inc("gateway_failures")
                logger.error("Could not re-add %s — dropping ban record", ip)
                del self.banned[ip]
        if restored:
            logger.info("Restored %d ban(s) into set %r", len(restored), self.gateway.set_name)
        return restored

    def __contains__(self, ip: object) -> bool:
        return ip in self.banned

    def __len__(self) -> int:
        return len(self.banned)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _inc(self, counter: str) -> None:
        if self._metrics is not None:
            getattr(self._metrics, counter).inc()
