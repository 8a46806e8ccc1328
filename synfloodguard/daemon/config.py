"""
daemon/config.py

Daemon configuration via Pydantic Settings.
Every value can be overridden with a SYNFLOODGUARD_-prefixed environment
variable or a .env file; the CLI overrides a subset at startup.

Quick start: create a .env file next to the service unit.
    SYNFLOODGUARD_POLL_INTERVAL=30
    SYNFLOODGUARD_FLOOD_MIN=10
    SYNFLOODGUARD_SET_NAME=synfloodguard
    SYNFLOODGUARD_WHITELIST_IPS=127.0.0.1,10.0.0.0/8
"""

from __future__ import annotations

import ipaddress
import json
from typing import Annotated

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SYNFLOODGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Detection
    POLL_INTERVAL: float = 30.0
    FLOOD_MIN: int = 10
    BAN_TIMEOUT: float = 3600.0
    SYNNER_MAX_TIME: float = 900.0
    FORGET_FACTOR: float = 0.5

    # Never banned: single addresses or CIDR networks
    WHITELIST_IPS: Annotated[list[str], NoDecode] = []

    # Enforcement
    IPSET_PATH: str = "/usr/sbin/ipset"
    SET_NAME: str = "synfloodguard"
    CREATE_SET: bool = True
    TOOL_TIMEOUT: float = 5.0

    # Files
    TCP_TABLE_PATH: str = "/proc/net/tcp"
    STATE_FILE: str = "/var/lib/synfloodguard/state.json"
    PID_FILE: str = "/run/synfloodguard.pid"

    # Logging
    LOG_FILE: str = ""
    LOG_LEVEL: str = "INFO"

    @field_validator("POLL_INTERVAL", "BAN_TIMEOUT", "SYNNER_MAX_TIME", "TOOL_TIMEOUT")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("FLOOD_MIN")
    @classmethod
    def _flood_min(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("FORGET_FACTOR")
    @classmethod
    def _forget_factor(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError("must be strictly between 0 and 1")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"unknown log level {v!r}")
        return v

    @field_validator("WHITELIST_IPS", mode="before")
    @classmethod
    def parse_whitelist(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except ValueError:
                    pass
            return [ip.strip() for ip in v.split(",") if ip.strip()]
        return v

    @field_validator("WHITELIST_IPS")
    @classmethod
    def _whitelist_entries(cls, v: list[str]) -> list[str]:
        for entry in v:
            ipaddress.ip_network(entry, strict=False)
        return v

    @model_validator(mode="after")
    def _synner_window(self) -> "Settings":
        # quantum = POLL_INTERVAL / SYNNER_MAX_TIME must stay <= 1
        if self.SYNNER_MAX_TIME < self.POLL_INTERVAL:
            raise ValueError("SYNNER_MAX_TIME must not be shorter than POLL_INTERVAL")
        return self

    @property
    def quantum(self) -> float:
        return self.POLL_INTERVAL / self.SYNNER_MAX_TIME
