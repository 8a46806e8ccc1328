"""
tests/test_counter.py

Tests for detection/counter.py — per-cycle counts and the immediate-flood rule.
"""

from __future__ import annotations

from synfloodguard.daemon.detection.counter import count_half_open, immediate_flooders
from synfloodguard.daemon.models import ConnEntry, TcpState


def conn(remote_ip: str, state: int = TcpState.SYN_RECV) -> ConnEntry:
    return ConnEntry(
        local_ip="192.168.1.5",
        local_port=80,
        remote_ip=remote_ip,
        remote_port=40000,
        state=state,
    )


class TestCountHalfOpen:

    def test_counts_per_address(self):
        entries = [conn("10.0.0.1")] * 3 + [conn("10.0.0.2")]
        assert count_half_open(entries) == {"10.0.0.1": 3, "10.0.0.2": 1}

    def test_other_states_ignored(self):
        entries = [
            conn("10.0.0.1", TcpState.ESTABLISHED),
            conn("10.0.0.1", TcpState.TIME_WAIT),
            conn("10.0.0.1", TcpState.NEW_SYN_RECV),
            conn("10.0.0.2"),
        ]
        assert count_half_open(entries) == {"10.0.0.2": 1}

    def test_empty(self):
        assert count_half_open([]) == {}

    def test_returns_plain_dict(self):
        assert type(count_half_open([conn("10.0.0.1")])) is dict


class TestImmediateFlooders:

    def test_below_threshold_not_declared(self):
        assert immediate_flooders({"10.0.0.1": 9}, flood_min=10) == []

    def test_at_threshold_declared(self):
        assert immediate_flooders({"10.0.0.1": 10}, flood_min=10) == ["10.0.0.1"]

    def test_above_threshold_declared(self):
        assert immediate_flooders({"10.0.0.1": 500}, flood_min=10) == ["10.0.0.1"]

    def test_sorted_and_filtered(self):
        counts = {"10.0.0.9": 20, "10.0.0.1": 15, "10.0.0.5": 2}
        assert immediate_flooders(counts, flood_min=10) == ["10.0.0.1", "10.0.0.9"]
