"""detection/__init__.py"""
from .counter import count_half_open, immediate_flooders
from .flooders import BanOutcome, FlooderLedger
from .synners import SynnerLedger

__all__ = [
    "BanOutcome",
    "FlooderLedger",
    "SynnerLedger",
    "count_half_open",
    "immediate_flooders",
]
