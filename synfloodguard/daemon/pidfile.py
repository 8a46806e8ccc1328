"""
daemon/pidfile.py

Run lock and --stop support.

The PID file doubles as the run lock: it is held with an exclusive,
non-blocking flock for the whole lifetime of the process, so a stale file
left by a crashed instance never blocks a restart.
"""

from __future__ import annotations

import fcntl
import logging
import os
import signal

logger = logging.getLogger(__name__)


class PidFile:
    """
    Usage:
        pidfile = PidFile("/run/synfloodguard.pid")
        if not pidfile.acquire():
            sys.exit(1)
        try:
            ...
        finally:
            pidfile.release()
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: int | None = None

    def acquire(self) -> bool:
        """Lock the file and write our PID. False if another instance holds it."""
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            logger.error("Cannot open PID file %r: %s", self.path, exc)
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            logger.error("Another instance holds %r (pid %s)", self.path, read_pid(self.path))
            return False

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        os.fsync(fd)
        self._fd = fd
        logger.debug("Acquired run lock %r", self.path)
        return True

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        os.close(self._fd)
        self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None


def read_pid(path: str) -> int | None:
    """PID stored in path, or None if the file is missing or garbled."""
    try:
        with open(path, "r", encoding="ascii") as fh:
            return int(fh.read().strip())
    except (OSError, ValueError):
        return None


def stop_running(path: str) -> int:
    """
    Ask the instance recorded in path to terminate.

    Returns a process exit code: 0 if SIGTERM was delivered, 1 otherwise.
    """
    pid = read_pid(path)
    if pid is None or pid <= 0:
        logger.error("No running instance found (PID file %r missing or invalid)", path)
        return 1
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        logger.error("Process %d from %r is not running", pid, path)
        return 1
    except PermissionError as exc:
        logger.error("Cannot signal process %d: %s", pid, exc)
        return 1
    logger.info("Sent SIGTERM to %d", pid)
    return 0
