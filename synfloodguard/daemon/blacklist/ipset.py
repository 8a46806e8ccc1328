"""
blacklist/ipset.py

IpsetGateway — drives the ipset(8) command line tool.

Commands issued:
    ipset create SET hash:ip -exist     (startup, optional)
    ipset add    SET ADDR -exist        (ban; -exist makes it idempotent)
    ipset del    SET ADDR               (unban; callers test first)
    ipset test   SET ADDR               (0 = member, 1 = not a member)

Every invocation is synchronous and bounded by `timeout` seconds; a hung
ipset would otherwise stall the whole poll loop. Exec failures and
timeouts are reported as a failed call (exit status None), never raised.
"""

from __future__ import annotations

import logging
import subprocess

from .base import BlacklistGateway, Membership

logger = logging.getLogger(__name__)

_NOT_A_MEMBER_STATUS = 1


class IpsetGateway(BlacklistGateway):
    """Blacklist gateway backed by a kernel ipset."""

    name = "ipset"

    def __init__(
        self,
        set_name: str = "synfloodguard",
        ipset_path: str = "/usr/sbin/ipset",
        timeout: float = 5.0,
    ) -> None:
        super().__init__(set_name)
        self.ipset_path = ipset_path
        self.timeout = timeout

    # ------------------------------------------------------------------
    # BlacklistGateway interface
    # ------------------------------------------------------------------

    def add(self, address: str) -> bool:
        status, _ = self._run("add", self.set_name, address, "-exist")
        return status == 0

    def remove(self, address: str) -> bool:
        status, _ = self._run("del", self.set_name, address)
        return status == 0

    def test(self, address: str) -> Membership:
        status, _ = self._run(
            "test", self.set_name, address,
            expected=(0, _NOT_A_MEMBER_STATUS),
        )
        if status == 0:
            return Membership.PRESENT
        if status == _NOT_A_MEMBER_STATUS:
            return Membership.ABSENT
        return Membership.ERROR

    def ensure_set(self) -> bool:
        status, _ = self._run("create", self.set_name, "hash:ip", "-exist")
        return status == 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, *args: str, expected: tuple[int, ...] = (0,)) -> tuple[int | None, str]:
        """
        Run ipset with args and log the outcome.

        Returns (exit status, stderr). Status is None when the tool could
        not be executed or did not finish within the timeout.
        """
        cmd = [self.ipset_path, *args]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out after %.1fs", " ".join(cmd), self.timeout)
            return None, ""
        except OSError as exc:
            logger.warning("%s could not be executed: %s", " ".join(cmd), exc)
            return None, ""

        stderr = (proc.stderr or "").strip()
        if proc.returncode in expected:
            logger.debug("%s → exit %d", " ".join(cmd), proc.returncode)
        else:
            logger.warning(
                "%s → exit %d: %s", " ".join(cmd), proc.returncode, stderr or "(no output)"
            )
        return proc.returncode, stderr

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"IpsetGateway(set={self.set_name!r}, "
            f"path={self.ipset_path!r}, timeout={self.timeout})"
        )
