"""
detection/counter.py

Per-cycle half-open counting and the immediate-flood rule.

Stateless across cycles: the counts are rebuilt from every snapshot and are
never persisted.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from ..models import ConnEntry


def count_half_open(entries: Iterable[ConnEntry]) -> dict[str, int]:
    """Map each remote address to the number of SYN_RECV entries it holds."""
    counts: Counter[str] = Counter(e.remote_ip for e in entries if e.is_half_open)
    return dict(counts)


def immediate_flooders(counts: dict[str, int], flood_min: int) -> list[str]:
    """Addresses whose count in this cycle reaches flood_min, sorted."""
    return sorted(ip for ip, n in counts.items() if n >= flood_min)
