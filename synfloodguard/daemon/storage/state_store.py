"""
storage/state_store.py

StateStore — persists the flooder and synner ledgers as one JSON document.

Design decisions:
  - A full snapshot is the unit of persistence. save() writes a temp file
    in the target directory, fsyncs it and os.replace()s it over the old
    copy, so a crash mid-write leaves the previous state intact.
  - A missing file loads as empty state. Any other read or decode problem
    raises StateLoadError: silently starting empty would forget live bans.
  - The document carries a format tag and a version so a future layout
    change can be detected instead of misread.

Document layout (version 1):
    {
      "format":   "synfloodguard-state",
      "version":  1,
      "saved_at": 1700000000.0,
      "flooders": {"203.0.113.7": 1699999990.5},
      "synners":  {"203.0.113.7": 1.2333, "198.51.100.2": 0.0333}
    }
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import tempfile
import time
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

STATE_FORMAT = "synfloodguard-state"
_CURRENT_STATE_VERSION = 1


class StateLoadError(Exception):
    """The state file exists but cannot be used."""


class PersistedState(BaseModel):
    format: Literal["synfloodguard-state"] = STATE_FORMAT
    version: Literal[1] = _CURRENT_STATE_VERSION
    saved_at: float = 0.0
    flooders: dict[str, float] = Field(default_factory=dict)
    synners: dict[str, float] = Field(default_factory=dict)

    @field_validator("flooders", "synners")
    @classmethod
    def _ipv4_keys(cls, v: dict[str, float]) -> dict[str, float]:
        for key in v:
            ipaddress.IPv4Address(key)
        return v


class StateStore:
    """
    Reads and atomically rewrites the state file.

    Usage:
        store = StateStore("/var/lib/synfloodguard/state.json")
        state = store.load()
        ...
        store.save(flooders, synners)
    """

    def __init__(self, path: str) -> None:
        self.path = path

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> PersistedState:
        """
        Load the persisted ledgers.

        Returns an empty PersistedState when the file does not exist.

        Raises:
            StateLoadError: unreadable file, invalid JSON or unknown format.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = fh.read()
        except FileNotFoundError:
            logger.info("No state file at %r — starting empty", self.path)
            return PersistedState()
        except (OSError, UnicodeDecodeError) as exc:
            raise StateLoadError(f"cannot read {self.path}: {exc}") from exc

        try:
            state = PersistedState.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise StateLoadError(f"invalid state file {self.path}: {exc}") from exc

        logger.info(
            "Loaded %d flooder(s) and %d synner(s) from %r",
            len(state.flooders), len(state.synners), self.path,
        )
        return state

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, flooders: dict[str, float], synners: dict[str, float]) -> None:
        """
        Atomically replace the state file with the given ledgers.

        Raises:
            OSError: the file could not be written; the previous copy is untouched.
        """
        state = PersistedState(
            saved_at=time.time(),
            flooders=dict(flooders),
            synners=dict(synners),
        )
        # stdlib json writes floats with repr(), so weights reload bit-for-bit
        payload = json.dumps(state.model_dump(), indent=2)

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=".", suffix=".tmp", dir=directory,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise
        logger.debug(
            "State saved — flooders=%d synners=%d path=%r",
            len(flooders), len(synners), self.path,
        )
