from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
import time
from typing import NoReturn, Sequence

from pydantic import ValidationError

from .blacklist import IpsetGateway
from .commands import CommandChannel
from .config import Settings
from .cycle import build_context, persist, run_loop
from .pidfile import PidFile, stop_running
from .storage import StateLoadError, StateStore

logger = logging.getLogger("synfloodguard.main")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# CLI flag dest → Settings field
_OVERRIDES = {
    "interval":        "POLL_INTERVAL",
    "flood_min":       "FLOOD_MIN",
    "ban_timeout":     "BAN_TIMEOUT",
    "synner_max_time": "SYNNER_MAX_TIME",
    "forget_factor":   "FORGET_FACTOR",
    "ipset":           "IPSET_PATH",
    "set_name":        "SET_NAME",
    "state_file":      "STATE_FILE",
    "pid_file":        "PID_FILE",
    "log_file":        "LOG_FILE",
    "log_level":       "LOG_LEVEL",
}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="synfloodguard",
        description="Ban remote addresses that hold too many half-open TCP connections.",
    )
    parser.add_argument("--interval",        type=float, help="seconds between polls")
    parser.add_argument("--flood-min",       type=int,   help="half-open count that bans at once")
    parser.add_argument("--ban-timeout",     type=float, help="ban duration in seconds")
    parser.add_argument("--synner-max-time", type=float, help="tolerated synner duration in seconds")
    parser.add_argument("--forget-factor",   type=float, help="decay factor in (0, 1)")
    parser.add_argument("--ipset",           help="path to the ipset binary")
    parser.add_argument("--set-name",        help="ipset set holding banned addresses")
    parser.add_argument("--state-file")
    parser.add_argument("--pid-file")
    parser.add_argument("--log-file",        help="log here instead of stderr")
    parser.add_argument(
        "--log-level", type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument(
        "--stop", action="store_true",
        help="terminate the running instance and exit",
    )
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        field: getattr(args, dest)
        for dest, field in _OVERRIDES.items()
        if getattr(args, dest) is not None
    }
    return Settings(**overrides)


def configure_logging(settings: Settings) -> None:
    handlers: list[logging.Handler]
    if settings.LOG_FILE:
        handlers = [logging.handlers.WatchedFileHandler(settings.LOG_FILE, encoding="utf-8")]
    else:
        handlers = [logging.StreamHandler(sys.stderr)]
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def run(settings: Settings) -> int:
    """Run the daemon in the foreground. Returns the process exit code."""
    pidfile = PidFile(settings.PID_FILE)
    if not pidfile.acquire():
        return 1

    try:
        try:
            state = StateStore(settings.STATE_FILE).load()
        except StateLoadError as exc:
            logger.critical("%s", exc)
            return 1

        gateway = IpsetGateway(
            set_name=settings.SET_NAME,
            ipset_path=settings.IPSET_PATH,
            timeout=settings.TOOL_TIMEOUT,
        )
        if settings.CREATE_SET and not gateway.ensure_set():
            logger.error("Could not create set %r — continuing", settings.SET_NAME)

        ctx = build_context(settings, gateway=gateway, state=state)
        ctx.flooders.reconcile(time.time())
        persist(ctx)

        channel = CommandChannel()
        channel.install_signal_handlers()

        logger.info(
            "synfloodguard started — table=%r set=%r state=%r whitelist=%s",
            settings.TCP_TABLE_PATH, settings.SET_NAME, settings.STATE_FILE,
            settings.WHITELIST_IPS or "none",
        )
        run_loop(ctx, channel)
        logger.info("synfloodguard stopped cleanly")
        return 0
    finally:
        pidfile.release()


def main(argv: Sequence[str] | None = None) -> NoReturn:
    args = _parse_args(argv)
    try:
        settings = load_settings(args)
    except ValidationError as e:
        print(f"ERROR: invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(2)

    try:
        configure_logging(settings)
    except OSError as e:
        print(f"ERROR: cannot open log file {settings.LOG_FILE!r}: {e}", file=sys.stderr)
        sys.exit(2)

    if args.stop:
        sys.exit(stop_running(settings.PID_FILE))

    sys.exit(run(settings))


if __name__ == "__main__":
    main()
