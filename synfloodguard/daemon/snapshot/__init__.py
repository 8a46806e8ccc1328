"""
snapshot/__init__.py

Public API for the snapshot sub-package.
"""

from .parser import SnapshotReadError, parse_line, parse_tcp_table, read_snapshot

__all__ = ["SnapshotReadError", "parse_line", "parse_tcp_table", "read_snapshot"]
