"""
blacklist/base.py

Abstract base class that every blacklist gateway must implement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum


class Membership(str, Enum):
    PRESENT = "PRESENT"
    ABSENT  = "ABSENT"
    ERROR   = "ERROR"


class BlacklistGateway(ABC):
    """
    Contract for the single point of contact with the enforcement set.

    Class-level attributes:
        name — short identifier used in log lines

    Every method MUST:
        - Never raise for tool failures (log and report them instead)
        - Be bounded in time
        - Be idempotent: add() of a present address and test() are safe to repeat
    """

    name: str = ""

    def __init__(self, set_name: str) -> None:
        self.set_name = set_name

    @abstractmethod
    def add(self, address: str) -> bool:
        """Add address to the set. True on success or if already present."""
        ...

    @abstractmethod
    def remove(self, address: str) -> bool:
        """Remove address from the set. True on success."""
        ...

    @abstractmethod
    def test(self, address: str) -> Membership:
        """Report whether address is currently in the set."""
        ...

    def ensure_set(self) -> bool:
        """Create the set if the backend needs it. Default: nothing to do."""
        return True

    def __repr__(self) -> str:
        return f"<Gateway:{self.name} set={self.set_name!r}>"
