"""
daemon/commands.py

Command channel between the host's signals and the poll loop.

Signal handlers only enqueue a Command; the loop picks commands up between
cycles and handle_command() acts on them, so detection code never runs
inside a signal handler.

    SIGTERM / SIGINT → TERMINATE
    SIGHUP           → REOPEN_LOG
    SIGUSR1          → TOGGLE_TRACE
    SIGUSR2          → DUMP_STATE

queue.SimpleQueue.put() is reentrant, which makes it safe to call from a
signal handler that interrupted a get() on the same queue.
"""

from __future__ import annotations

import logging
import logging.handlers
import queue
import signal
import time
from typing import TYPE_CHECKING

from .models import Command

if TYPE_CHECKING:
    from .cycle import DaemonContext

logger = logging.getLogger(__name__)

SIGNAL_COMMANDS: dict[int, Command] = {
    signal.SIGTERM: Command.TERMINATE,
    signal.SIGINT:  Command.TERMINATE,
    signal.SIGHUP:  Command.REOPEN_LOG,
    signal.SIGUSR1: Command.TOGGLE_TRACE,
    signal.SIGUSR2: Command.DUMP_STATE,
}


class CommandChannel:
    """FIFO of Commands, fed by signal handlers or directly by callers."""

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Command] = queue.SimpleQueue()

    def send(self, command: Command) -> None:
        self._queue.put(command)

    def get(self, timeout: float | None = None) -> Command | None:
        """Next command, or None if none arrived within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def install_signal_handlers(self) -> None:
        """Route SIGNAL_COMMANDS signals into this channel. Main thread only."""
        def _handler(signum, _frame) -> None:
            self.send(SIGNAL_COMMANDS[signum])

        for signum in SIGNAL_COMMANDS:
            signal.signal(signum, _handler)


def handle_command(ctx: "DaemonContext", command: Command) -> bool:
    """
    Act on one command.

    Returns False when the loop should stop, True otherwise.
    """
    logger.debug("Handling command %s", command.value)

    if command is Command.TERMINATE:
        logger.info("Termination requested")
        return False

    if command is Command.REOPEN_LOG:
        reopened = reopen_log_files(logging.getLogger())
        logger.info("Reopened %d log file(s)", reopened)
    elif command is Command.TOGGLE_TRACE:
        toggle_trace(ctx)
    elif command is Command.DUMP_STATE:
        dump_state(ctx)
    return True


def reopen_log_files(root: logging.Logger) -> int:
    """
    Reopen every file handler on root, e.g. after logrotate moved the file.

    A plain FileHandler is closed; it reopens its path on the next record.
    """
    count = 0
    for handler in root.handlers:
        if isinstance(handler, logging.handlers.WatchedFileHandler):
            handler.reopenIfNeeded()
        elif isinstance(handler, logging.FileHandler):
            handler.close()
        else:
            continue
        count += 1
    return count


def toggle_trace(ctx: "DaemonContext") -> None:
    """Flip the root logger between DEBUG and the configured level."""
    ctx.trace_enabled = not ctx.trace_enabled
    level = logging.DEBUG if ctx.trace_enabled else ctx.base_log_level
    logging.getLogger().setLevel(level)
    logger.warning("Trace %s — log level now %s", "on" if ctx.trace_enabled else "off",
                   logging.getLevelName(level))


def dump_state(ctx: "DaemonContext", now: float | None = None) -> None:
    """Log both ledgers and the counters at INFO."""
    now = time.time() if now is None else now
    logger.info("DUMP flooders=%d synners=%d", len(ctx.flooders), len(ctx.synners))
    for ip, since in sorted(ctx.flooders.banned.items()):
        logger.info("DUMP flooder %-15s banned %.0fs ago", ip, now - since)
    for ip, weight in sorted(ctx.synners.weights.items()):
        logger.info("DUMP synner  %-15s weight=%.4f", ip, weight)
    logger.info("DUMP metrics %s", ctx.metrics.as_dict())
