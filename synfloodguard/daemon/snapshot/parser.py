"""
snapshot/parser.py

Converts the kernel TCP table (/proc/net/tcp) into ConnEntry records.

Line format (one connection per line, after a header line):
    sl  local_address rem_address   st tx_queue rx_queue ...
     0: 0100007F:0CEA 00000000:0000 0A 00000000:00000000 ...

  - Addresses are 8 hex digits: the kernel's 32-bit network-order value
    printed as a host integer, so the byte order on disk follows the host.
  - Ports are 4 hex digits, states are 2 hex digits (03 = SYN_RECV).

Design principles:
  - parse_tcp_table() is lazy and never raises on bad input; malformed
    lines (the header included) are skipped silently.
  - read_snapshot() is the only function that touches the filesystem. It
    reads the whole table in one go so a cycle works on a consistent copy,
    and wraps any OSError in SnapshotReadError.
"""

from __future__ import annotations

import logging
import re
import socket
import struct
from typing import Iterable, Iterator

from ..models import ConnEntry

logger = logging.getLogger(__name__)

_LINE_RE = re.compile(
    r"^\s*\d+:\s+"
    r"(?P<local_ip>[0-9A-Fa-f]{8}):(?P<local_port>[0-9A-Fa-f]{4})\s+"
    r"(?P<remote_ip>[0-9A-Fa-f]{8}):(?P<remote_port>[0-9A-Fa-f]{4})\s+"
    r"(?P<state>[0-9A-Fa-f]{2})(?:\s|$)"
)


class SnapshotReadError(OSError):
    """The connection table could not be read; the cycle should be skipped."""


def _decode_ipv4(hex_addr: str) -> str:
    """
    Decode an 8-digit /proc/net/tcp address into dotted-quad form.

    The kernel prints the raw __be32 as a native integer, so packing it back
    in native byte order restores the network-order bytes.
    """
    return socket.inet_ntoa(struct.pack("=I", int(hex_addr, 16)))


def parse_line(line: str) -> ConnEntry | None:
    """Parse one table line. Returns None for the header and malformed lines."""
    m = _LINE_RE.match(line)
    if m is None:
        return None
    return ConnEntry(
        local_ip=_decode_ipv4(m.group("local_ip")),
        local_port=int(m.group("local_port"), 16),
        remote_ip=_decode_ipv4(m.group("remote_ip")),
        remote_port=int(m.group("remote_port"), 16),
        state=int(m.group("state"), 16),
    )


def parse_tcp_table(lines: Iterable[str]) -> Iterator[ConnEntry]:
    """Lazily yield a ConnEntry for every well-formed line."""
    for line in lines:
        entry = parse_line(line)
        if entry is not None:
            yield entry


def read_snapshot(path: str = "/proc/net/tcp") -> list[str]:
    """
    Read the raw table lines.

    Raises:
        SnapshotReadError: the source could not be opened or read.
    """
    try:
        with open(path, "r", encoding="ascii", errors="replace") as fh:
            return fh.readlines()
    except OSError as exc:
        raise SnapshotReadError(f"cannot read {path}: {exc}") from exc
