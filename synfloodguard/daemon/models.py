"""
daemon/models.py

Shared dataclasses and enums for every stage of a poll cycle.

ConnEntry  — one parsed line of the kernel TCP table
TcpState   — kernel connection state codes (include/net/tcp_states.h)
Command    — operational events delivered to the loop between cycles
CycleReport — what one cycle decided, returned by run_cycle()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


# ---------------------------------------------------------------------------
# Stage 1: snapshot parser output
# ---------------------------------------------------------------------------

class TcpState(IntEnum):
    ESTABLISHED = 0x01
    SYN_SENT    = 0x02
    SYN_RECV    = 0x03
    FIN_WAIT1   = 0x04
    FIN_WAIT2   = 0x05
    TIME_WAIT   = 0x06
    CLOSE       = 0x07
    CLOSE_WAIT  = 0x08
    LAST_ACK    = 0x09
    LISTEN      = 0x0A
    CLOSING     = 0x0B
    NEW_SYN_RECV = 0x0C


@dataclass(slots=True, frozen=True)
class ConnEntry:
    """One connection from a TCP table snapshot."""

    local_ip: str
    """Dotted-quad local address, e.g. '192.168.1.5'."""

    local_port: int

    remote_ip: str
    """Dotted-quad remote address, the key used by both ledgers."""

    remote_port: int

    state: int
    """Raw state code; compare against TcpState members."""

    @property
    def is_half_open(self) -> bool:
        return self.state == TcpState.SYN_RECV


# ---------------------------------------------------------------------------
# Command channel
# ---------------------------------------------------------------------------

class Command(str, Enum):
    TERMINATE    = "TERMINATE"
    REOPEN_LOG   = "REOPEN_LOG"
    TOGGLE_TRACE = "TOGGLE_TRACE"
    DUMP_STATE   = "DUMP_STATE"


# ---------------------------------------------------------------------------
# Cycle output
# ---------------------------------------------------------------------------

@dataclass
class CycleReport:
    """Summary of a single poll cycle, mostly for logging and tests."""

    now: float
    skipped: bool = False
    half_open: dict[str, int] = field(default_factory=dict)
    """Address → half-open count observed in this cycle."""

    declared: list[str] = field(default_factory=list)
    """Addresses declared flooders this cycle (either rule, whitelist applied)."""

    banned: list[str] = field(default_factory=list)
    """Addresses newly added to the blacklist this cycle."""

    expired: list[str] = field(default_factory=list)
    """Addresses whose ban was lifted this cycle."""

    persisted: bool = False

    def __repr__(self) -> str:
        return (
            f"CycleReport(skipped={self.skipped} half_open={len(self.half_open)} "
            f"declared={len(self.declared)} banned={len(self.banned)} "
            f"expired={len(self.expired)} persisted={self.persisted})"
        )
