"""
tests/test_cycle.py

Tests for cycle.py — full poll cycles against a TCP table written to
tmp_path and the FakeGateway, plus the command-driven loop.
"""

from __future__ import annotations

import itertools
import json
import os

import pytest

from synfloodguard.daemon.commands import CommandChannel
from synfloodguard.daemon.config import Settings
from synfloodguard.daemon.cycle import build_context, persist, run_cycle, run_loop
from synfloodguard.daemon.models import Command
from synfloodguard.daemon.storage import PersistedState

T0 = 1_700_000_000.0
ATTACKER = "203.0.113.7"
NEIGHBOUR = "198.51.100.20"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path, monkeypatch) -> Settings:
    monkeypatch.chdir(tmp_path)
    return Settings(
        POLL_INTERVAL=30,
        FLOOD_MIN=10,
        BAN_TIMEOUT=3600,
        SYNNER_MAX_TIME=900,
        FORGET_FACTOR=0.5,
        TCP_TABLE_PATH=str(tmp_path / "tcp"),
        STATE_FILE=str(tmp_path / "state" / "state.json"),
        PID_FILE=str(tmp_path / "sfg.pid"),
        WHITELIST_IPS=["10.0.0.0/8"],
    )


@pytest.fixture
def ctx(settings, gateway):
    return build_context(settings, gateway=gateway)


@pytest.fixture
def write_table(settings, table_builder):
    def _write(half_open: dict[str, int], established: dict[str, int] | None = None) -> None:
        with open(settings.TCP_TABLE_PATH, "w") as f:
            f.write(table_builder(half_open, established))
    return _write


def saved_state(settings) -> dict:
    with open(settings.STATE_FILE) as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# Immediate flood rule
# ---------------------------------------------------------------------------

class TestImmediateFlood:

    def test_nine_half_open_not_banned(self, ctx, gateway, write_table):
        write_table({ATTACKER: 9})
        report = run_cycle(ctx, now=T0)
        assert report.banned == []
        assert ATTACKER not in ctx.flooders
        assert gateway.count("add") == 0

    def test_ten_half_open_banned_at_now(self, ctx, gateway, write_table):
        write_table({ATTACKER: 10})
        report = run_cycle(ctx, now=T0)
        assert report.banned == [ATTACKER]
        assert ctx.flooders.banned == {ATTACKER: T0}
        assert ATTACKER in gateway.members

    def test_established_connections_not_counted(self, ctx, write_table):
        write_table({ATTACKER: 2}, established={ATTACKER: 50})
        report = run_cycle(ctx, now=T0)
        assert report.half_open == {ATTACKER: 2}
        assert report.banned == []

    def test_add_not_repeated_while_banned(self, ctx, gateway, write_table):
        write_table({ATTACKER: 20})
        run_cycle(ctx, now=T0)
        run_cycle(ctx, now=T0 + 30)
        run_cycle(ctx, now=T0 + 60)
        assert gateway.count("add", ATTACKER) == 1
        assert ctx.flooders.banned[ATTACKER] == T0 + 60

    def test_failed_add_retried_next_cycle(self, ctx, gateway, write_table):
        write_table({ATTACKER: 20})
        gateway.fail_add = True
        run_cycle(ctx, now=T0)
        assert ATTACKER not in ctx.flooders
        assert ctx.metrics.gateway_failures.value == 1
        gateway.fail_add = False
        report = run_cycle(ctx, now=T0 + 30)
        assert report.banned == [ATTACKER]


# ---------------------------------------------------------------------------
# Cumulative synner rule
# ---------------------------------------------------------------------------

class TestSynnerRule:

    def test_steady_synner_banned_on_31st_cycle(self, ctx, gateway, write_table):
        write_table({ATTACKER: 1})
        for cycle in range(30):
            report = run_cycle(ctx, now=T0 + 30 * cycle)
            assert report.banned == [], f"banned too early at cycle {cycle + 1}"
        report = run_cycle(ctx, now=T0 + 30 * 30)
        assert report.banned == [ATTACKER]
        assert ctx.flooders.banned[ATTACKER] == T0 + 900

    def test_synner_weight_survives_ban(self, ctx, write_table):
        write_table({ATTACKER: 15})
        run_cycle(ctx, now=T0)
        run_cycle(ctx, now=T0 + 30)
        assert ATTACKER in ctx.flooders
        assert ctx.synners.get(ATTACKER) == pytest.approx(2 / 30)

    def test_quiet_heavy_synner_ban_refreshed_not_expired(self, settings, gateway, write_table):
        ctx = build_context(
            settings.model_copy(update={"BAN_TIMEOUT": 60}), gateway=gateway,
            state=PersistedState(saved_at=T0, flooders={ATTACKER: T0}, synners={ATTACKER: 3.0}),
        )
        gateway.members.add(ATTACKER)
        write_table({})
        report = run_cycle(ctx, now=T0 + 120)
        assert ATTACKER in report.declared
        assert report.expired == []
        assert ctx.flooders.banned[ATTACKER] == T0 + 120
        assert ATTACKER in gateway.members
        assert gateway.count("remove") == 0

    def test_quiet_address_forgotten(self, ctx, write_table):
        write_table({ATTACKER: 1})
        run_cycle(ctx, now=T0)
        write_table({})
        run_cycle(ctx, now=T0 + 30)
        run_cycle(ctx, now=T0 + 60)
        assert ATTACKER not in ctx.synners


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

class TestExpiry:

    def test_ban_lifted_after_timeout(self, ctx, gateway, write_table):
        write_table({ATTACKER: 10})
        run_cycle(ctx, now=T0)
        write_table({})
        assert run_cycle(ctx, now=T0 + 3600).expired == []
        report = run_cycle(ctx, now=T0 + 3601)
        assert report.expired == [ATTACKER]
        assert ATTACKER not in gateway.members
        assert ATTACKER not in ctx.flooders

    def test_externally_cleared_ban_dropped(self, ctx, gateway, write_table):
        write_table({ATTACKER: 10})
        run_cycle(ctx, now=T0)
        gateway.members.clear()  # operator flushed the set
        write_table({})
        report = run_cycle(ctx, now=T0 + 4000)
        assert report.expired == [ATTACKER]
        assert gateway.count("remove") == 0

    def test_continued_flood_keeps_ban(self, ctx, gateway, write_table):
        write_table({ATTACKER: 10})
        run_cycle(ctx, now=T0)
        report = run_cycle(ctx, now=T0 + 4000)
        assert report.expired == []
        assert ctx.flooders.banned[ATTACKER] == T0 + 4000


# ---------------------------------------------------------------------------
# Whitelist
# ---------------------------------------------------------------------------

class TestWhitelist:

    def test_whitelisted_address_never_banned(self, ctx, gateway, write_table):
        write_table({"10.1.2.3": 50})
        report = run_cycle(ctx, now=T0)
        assert report.declared == []
        assert gateway.count("add") == 0

    def test_whitelisted_address_still_weighted(self, ctx, write_table):
        write_table({"10.1.2.3": 1})
        run_cycle(ctx, now=T0)
        assert "10.1.2.3" in ctx.synners

    def test_is_whitelisted(self, ctx):
        assert ctx.is_whitelisted("10.255.0.1") is True
        assert ctx.is_whitelisted(ATTACKER) is False


# ---------------------------------------------------------------------------
# Snapshot and persistence failures
# ---------------------------------------------------------------------------

class TestFailures:

    def test_unreadable_table_skips_cycle(self, ctx, gateway, settings):
        ctx.synners.weights[ATTACKER] = 0.5
        report = run_cycle(ctx, now=T0)
        assert report.skipped is True
        assert gateway.calls == []
        assert ctx.synners.weights == {ATTACKER: 0.5}
        assert not os.path.exists(settings.STATE_FILE)
        assert ctx.metrics.cycles_skipped.value == 1

    def test_malformed_lines_ignored(self, ctx, settings, line_builder):
        with open(settings.TCP_TABLE_PATH, "w") as f:
            f.write("garbage\n" + line_builder(ATTACKER) + "0: zz\n")
        report = run_cycle(ctx, now=T0)
        assert report.half_open == {ATTACKER: 1}

    def test_state_written_after_cycle(self, ctx, settings, write_table):
        write_table({ATTACKER: 10, NEIGHBOUR: 1})
        report = run_cycle(ctx, now=T0)
        assert report.persisted is True
        doc = saved_state(settings)
        assert doc["flooders"] == {ATTACKER: T0}
        assert set(doc["synners"]) == {ATTACKER, NEIGHBOUR}

    def test_state_write_failure_does_not_raise(self, ctx, settings, write_table, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        ctx.store.path = str(blocker / "state.json")
        write_table({ATTACKER: 10})
        report = run_cycle(ctx, now=T0)
        assert report.persisted is False
        assert ATTACKER in ctx.flooders
        assert ctx.metrics.state_write_failures.value == 1
        assert persist(ctx) is False


# ---------------------------------------------------------------------------
# Restart
# ---------------------------------------------------------------------------

class TestRestart:

    def test_reload_continues_where_it_left(self, ctx, settings, gateway, write_table):
        write_table({ATTACKER: 10, NEIGHBOUR: 1})
        run_cycle(ctx, now=T0)
        restored = build_context(settings, gateway=gateway, state=ctx.store.load())
        assert restored.flooders.banned == ctx.flooders.banned
        assert restored.synners.weights == ctx.synners.weights

    def test_build_context_uses_state(self, settings, gateway):
        state = PersistedState(flooders={ATTACKER: T0}, synners={ATTACKER: 0.7})
        restored = build_context(settings, gateway=gateway, state=state)
        assert ATTACKER in restored.flooders
        assert restored.synners.get(ATTACKER) == 0.7
        assert restored.synners.quantum == pytest.approx(1 / 30)


# ---------------------------------------------------------------------------
# run_loop
# ---------------------------------------------------------------------------

class ScriptedChannel(CommandChannel):
    """Returns pre-scripted commands from get(); None means 'timed out'."""

    def __init__(self, script: list[Command | None]) -> None:
        super().__init__()
        self.script = list(script)
        self.timeouts: list[float | None] = []

    def get(self, timeout: float | None = None) -> Command | None:
        self.timeouts.append(timeout)
        return self.script.pop(0)


class TestRunLoop:

    def test_terminate_after_first_cycle(self, ctx, settings, write_table):
        write_table({ATTACKER: 10})
        channel = CommandChannel()
        channel.send(Command.TERMINATE)
        run_loop(ctx, channel)
        assert ctx.metrics.cycles_completed.value == 1
        assert saved_state(settings)["flooders"].keys() == {ATTACKER}

    def test_cycles_repeat_every_interval(self, ctx, write_table):
        write_table({})
        clock = itertools.count(10, 10)
        channel = ScriptedChannel([None, None, Command.TERMINATE])
        run_loop(ctx, channel, clock=lambda: next(clock))
        assert ctx.metrics.cycles_completed.value == 2
        assert channel.timeouts == [20, 10, 20]

    def test_non_terminal_commands_keep_running(self, ctx, write_table):
        write_table({})
        channel = CommandChannel()
        channel.send(Command.DUMP_STATE)
        channel.send(Command.TERMINATE)
        run_loop(ctx, channel)
        assert ctx.metrics.cycles_completed.value == 1

    def test_state_flushed_on_terminate_even_if_cycle_skipped(self, ctx, settings):
        channel = CommandChannel()
        channel.send(Command.TERMINATE)
        run_loop(ctx, channel)  # no table file → cycle skipped
        assert ctx.metrics.cycles_skipped.value == 1
        assert os.path.exists(settings.STATE_FILE)
