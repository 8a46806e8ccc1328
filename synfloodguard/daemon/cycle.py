"""
daemon/cycle.py

The poll cycle and the loop that drives it.

Per cycle (runs to completion, single-threaded):
    read_snapshot → parse_tcp_table → count_half_open
        → immediate_flooders + SynnerLedger.update
        → FlooderLedger.declare / FlooderLedger.expire  (gateway calls)
        → StateStore.save

All mutable daemon state lives on one DaemonContext passed explicitly to
run_cycle(); there are no module-level ledgers.

Between cycles, run_loop() waits on the CommandChannel so operational
commands (terminate, reopen log, toggle trace, dump) are handled at cycle
boundaries only.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from .blacklist import BlacklistGateway, IpsetGateway
from .commands import CommandChannel, handle_command
from .config import Settings
from .detection import BanOutcome, FlooderLedger, SynnerLedger, count_half_open, immediate_flooders
from .metrics import DaemonMetrics
from .models import CycleReport
from .snapshot import SnapshotReadError, parse_tcp_table, read_snapshot
from .storage import PersistedState, StateStore

logger = logging.getLogger(__name__)


@dataclass
class DaemonContext:
    """Everything one daemon run owns."""

    settings: Settings
    gateway: BlacklistGateway
    store: StateStore
    synners: SynnerLedger
    flooders: FlooderLedger
    metrics: DaemonMetrics = field(default_factory=DaemonMetrics)
    whitelist: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = field(default_factory=list)

    base_log_level: int = logging.INFO
    trace_enabled: bool = False
    """True while TOGGLE_TRACE has switched the root logger to DEBUG."""

    def is_whitelisted(self, ip: str) -> bool:
        addr = ipaddress.ip_address(ip)
        return any(addr in net for net in self.whitelist)


def build_context(
    settings: Settings,
    gateway: BlacklistGateway | None = None,
    state: PersistedState | None = None,
) -> DaemonContext:
    """
    Wire a DaemonContext from settings and previously persisted state.

    The state file is not read here; pass the result of StateStore.load().
    """
    metrics = DaemonMetrics()
    if gateway is None:
        gateway = IpsetGateway(
            set_name=settings.SET_NAME,
            ipset_path=settings.IPSET_PATH,
            timeout=settings.TOOL_TIMEOUT,
        )
    state = state if state is not None else PersistedState()

    return DaemonContext(
        settings=settings,
        gateway=gateway,
        store=StateStore(settings.STATE_FILE),
        synners=SynnerLedger(
            quantum=settings.quantum,
            forget_factor=settings.FORGET_FACTOR,
            weights=state.synners,
        ),
        flooders=FlooderLedger(
            gateway=gateway,
            ban_timeout=settings.BAN_TIMEOUT,
            banned=state.flooders,
            metrics=metrics,
        ),
        metrics=metrics,
        whitelist=[ipaddress.ip_network(w, strict=False) for w in settings.WHITELIST_IPS],
        base_log_level=getattr(logging, settings.LOG_LEVEL),
    )


# ---------------------------------------------------------------------------
# One cycle
# ---------------------------------------------------------------------------

def run_cycle(ctx: DaemonContext, now: float | None = None) -> CycleReport:
    """Run one complete poll cycle. Never raises for I/O or tool failures."""
    now = time.time() if now is None else now
    report = CycleReport(now=now)

    try:
        lines = read_snapshot(ctx.settings.TCP_TABLE_PATH)
    except SnapshotReadError as exc:
        ctx.metrics.cycles_skipped.inc()
        logger.warning("Skipping cycle: %s", exc)
        report.skipped = True
        return report

    counts = count_half_open(parse_tcp_table(lines))
    report.half_open = counts
    ctx.metrics.half_open_seen.inc(sum(counts.values()))

    immediate = immediate_flooders(counts, ctx.settings.FLOOD_MIN)
    for ip in immediate:
        logger.info("Immediate flood from %s: %d half-open", ip, counts[ip])

    annoying = ctx.synners.update(counts)
    for ip in annoying:
        if ip not in immediate:
            logger.info("Annoying synner %s: weight=%.3f", ip, ctx.synners.get(ip))

    for ip in sorted(set(immediate) | set(annoying)):
        if ctx.is_whitelisted(ip):
            logger.debug("Not banning whitelisted %s", ip)
            continue
        report.declared.append(ip)
        if ctx.flooders.declare(ip, now) is BanOutcome.ADDED:
            report.banned.append(ip)

    report.expired = ctx.flooders.expire(now)
    report.persisted = persist(ctx)
    ctx.metrics.cycles_completed.inc()

    logger.debug(
        "Cycle done — half_open_ips=%d synners=%d flooders=%d banned=%s expired=%s",
        len(counts), len(ctx.synners), len(ctx.flooders), report.banned, report.expired,
    )
    return report


def persist(ctx: DaemonContext) -> bool:
    """Write both ledgers. Failures are logged and retried next cycle."""
    try:
        ctx.store.save(ctx.flooders.banned, ctx.synners.weights)
    except OSError as exc:
        ctx.metrics.state_write_failures.inc()
        logger.error("Failed to save state to %r: %s", ctx.store.path, exc)
        return False
    return True


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------

def run_loop(
    ctx: DaemonContext,
    channel: CommandChannel,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """
    Run cycles every POLL_INTERVAL seconds until a TERMINATE command arrives.

    State is flushed one last time before returning.
    """
    interval = ctx.settings.POLL_INTERVAL
    logger.info(
        "Poll loop started — interval=%.1fs flood_min=%d ban_timeout=%.0fs quantum=%.4f forget=%.2f",
        interval, ctx.settings.FLOOD_MIN, ctx.settings.BAN_TIMEOUT,
        ctx.synners.quantum, ctx.synners.forget_factor,
    )

    while True:
        deadline = clock() + interval
        run_cycle(ctx)

        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                break
            command = channel.get(timeout=remaining)
            if command is None:
                continue
            if not handle_command(ctx, command):
                persist(ctx)
                logger.info("Poll loop stopped — metrics=%s", ctx.metrics.as_dict())
                return
