"""
tests/conftest.py

Shared fixtures: an in-memory blacklist gateway and /proc/net/tcp line
builders. No test touches the real ipset or /proc.
"""

from __future__ import annotations

import socket
import struct

import pytest

from synfloodguard.daemon.blacklist.base import BlacklistGateway, Membership
from synfloodguard.daemon.models import TcpState


class FakeGateway(BlacklistGateway):
    """Set-backed gateway that records every call and can be told to fail."""

    name = "fake"

    def __init__(self, set_name: str = "test-set") -> None:
        super().__init__(set_name)
        self.members: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.fail_add = False
        self.fail_remove = False
        self.fail_test = False
        self.fail_ensure = False

    def add(self, address: str) -> bool:
        self.calls.append(("add", address))
        if self.fail_add:
            return False
        self.members.add(address)
        return True

    def remove(self, address: str) -> bool:
        self.calls.append(("remove", address))
        if self.fail_remove:
            return False
        self.members.discard(address)
        return True

    def test(self, address: str) -> Membership:
        self.calls.append(("test", address))
        if self.fail_test:
            return Membership.ERROR
        return Membership.PRESENT if address in self.members else Membership.ABSENT

    def ensure_set(self) -> bool:
        self.calls.append(("ensure_set", self.set_name))
        return not self.fail_ensure

    def count(self, op: str, address: str | None = None) -> int:
        return sum(
            1 for o, a in self.calls
            if o == op and (address is None or a == address)
        )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def hex_addr(ip: str) -> str:
    """Encode a dotted quad the way the kernel prints it in /proc/net/tcp."""
    return "%08X" % struct.unpack("=I", socket.inet_aton(ip))[0]


def tcp_line(
    remote_ip: str,
    state: int = TcpState.SYN_RECV,
    local_ip: str = "192.168.1.5",
    local_port: int = 80,
    remote_port: int = 40000,
    sl: int = 0,
) -> str:
    return (
        f"{sl:4d}: {hex_addr(local_ip)}:{local_port:04X} "
        f"{hex_addr(remote_ip)}:{remote_port:04X} {state:02X} "
        f"00000000:00000000 00:00000000 00000000     0        0 12345 1 "
        f"0000000000000000 100 0 0 10 0\n"
    )


TCP_HEADER = (
    "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when "
    "retrnsmt   uid  timeout inode\n"
)


def tcp_table(half_open: dict[str, int], established: dict[str, int] | None = None) -> str:
    """Build a full table text with the given per-address connection counts."""
    lines = [TCP_HEADER]
    sl = 0
    for ip, n in half_open.items():
        for i in range(n):
            lines.append(tcp_line(ip, TcpState.SYN_RECV, remote_port=40000 + i, sl=sl))
            sl += 1
    for ip, n in (established or {}).items():
        for i in range(n):
            lines.append(tcp_line(ip, TcpState.ESTABLISHED, remote_port=50000 + i, sl=sl))
            sl += 1
    return "".join(lines)


@pytest.fixture
def table_builder():
    return tcp_table


@pytest.fixture
def line_builder():
    return tcp_line
