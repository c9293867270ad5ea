"""Tests for loopengine.workflow.engine (facade and auto-transition rule)."""

import shlex
import sys
import textwrap
import threading

import pytest

from conftest import make_request
from loopengine.lib.config import EngineConfig
from loopengine.pm.prd import GateError
from loopengine.runner.worktree import ProvisioningError
from loopengine.tickets.store import TicketNotFound
from loopengine.workflow.broadcaster import StatusBroadcaster, StatusEvent
from loopengine.workflow.engine import AutoTransitionRule, LoopEngine
from loopengine.workflow.state_machine import TicketStatus

TIMEOUT = 10


def write_agent(home, body: str):
    """Point the execute stage at a small Python script."""
    script = home / "agent.py"
    script.write_text(textwrap.dedent(body))
    command = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"
    (home / "agents.yaml").write_text(f"stages:\n  execute: {command!r}\n")


@pytest.fixture
def home(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    (home / "engine.yaml").write_text("flush_debounce_seconds: 60\nkill_grace_seconds: 0.2\n")
    write_agent(home, 'print("## working")\n')
    return home


@pytest.fixture
def engine(home):
    engine = LoopEngine.create(home, generator=lambda prompt: "# PRD\nDo the thing")
    yield engine
    engine.shutdown()


def approved_ticket(engine, status="in_progress", **overrides):
    ticket = engine.store.create(make_request(**overrides))
    for step in ["up_next", "in_review", "in_progress", "in_testing", "completed"]:
        if ticket.status.value == status:
            break
        ticket = engine.store.transition(ticket.id, step)
    engine.prd_gate.generate(ticket.id)
    engine.prd_gate.approve(ticket.id)
    return engine.store.get_by_id(ticket.id)


class TestAutoTransitionRule:
    @pytest.fixture
    def rule(self, store):
        broadcaster = StatusBroadcaster()
        updates = []
        broadcaster.subscribe_tickets(updates.append)
        rule = AutoTransitionRule(store, broadcaster)
        rule.updates = updates
        return rule

    def test_fires_on_running_to_stopped_edge(self, rule, store, create_ticket):
        ticket = create_ticket(status="in_progress")

        rule(StatusEvent(ticket.id, True, 0))
        rule(StatusEvent(ticket.id, False, 3))

        assert store.get_by_id(ticket.id).status == TicketStatus.IN_TESTING
        assert [t.status for t in rule.updates] == [TicketStatus.IN_TESTING]

    def test_fires_once_for_repeated_stop_events(self, rule, store, create_ticket):
        ticket = create_ticket(status="in_progress")

        rule(StatusEvent(ticket.id, True, 0))
        rule(StatusEvent(ticket.id, False, 0))
        rule(StatusEvent(ticket.id, False, 0))

        assert len(rule.updates) == 1
        history = store.get_by_id(ticket.id).history
        assert [e.to_status for e in history if e.action == "transitioned"][-1] == "in_testing"
        assert sum(1 for e in history if e.to_status == "in_testing") == 1

    def test_ignores_stop_without_prior_run(self, rule, store, create_ticket):
        ticket = create_ticket(status="in_progress")
        rule(StatusEvent(ticket.id, False, 0))
        assert store.get_by_id(ticket.id).status == TicketStatus.IN_PROGRESS

    def test_ignores_iteration_events(self, rule, store, create_ticket):
        ticket = create_ticket(status="in_progress")
        rule(StatusEvent(ticket.id, True, 0))
        rule(StatusEvent(ticket.id, True, 1))
        assert store.get_by_id(ticket.id).status == TicketStatus.IN_PROGRESS

    @pytest.mark.parametrize("status", ["backlog", "in_review", "in_testing", "completed"])
    def test_other_statuses_unchanged(self, rule, store, create_ticket, status):
        ticket = create_ticket(status=status)
        rule(StatusEvent(ticket.id, True, 0))
        rule(StatusEvent(ticket.id, False, 0))
        assert store.get_by_id(ticket.id).status.value == status
        assert rule.updates == []

    def test_deleted_ticket(self, rule, store, create_ticket):
        ticket = create_ticket(status="in_progress")
        rule(StatusEvent(ticket.id, True, 0))
        store.delete(ticket.id)
        rule(StatusEvent(ticket.id, False, 0))
        assert rule.updates == []


class TestCreate:
    def test_builds_from_home(self, home, engine):
        assert isinstance(engine.config, EngineConfig)
        assert engine.config.home == home
        assert engine.store.file_path == home / "tickets.json"
        assert engine.supervisor.kill_grace_seconds == 0.2


class TestExecute:
    def test_provisions_runs_and_auto_transitions(self, engine, tmp_path):
        ticket = approved_ticket(engine)
        updates = []
        engine.broadcaster.subscribe_tickets(updates.append)

        started = engine.execute(ticket.id, str(tmp_path / "work"))
        assert engine.wait(ticket.id, TIMEOUT)

        workspace = tmp_path / "work" / "add-login-page"
        assert started.worktree_path == str(workspace.resolve())
        assert (workspace / ".git").exists()
        assert (workspace / ".claude" / "prd.md").read_text() == "# PRD\nDo the thing"

        stored = engine.store.get_by_id(ticket.id)
        assert stored.worktree_base_path == str(tmp_path / "work")
        assert stored.worktree_path == started.worktree_path
        assert stored.status == TicketStatus.IN_TESTING
        assert [t.status for t in updates] == [TicketStatus.IN_TESTING]
        assert engine.status(ticket.id).iteration == 1

    def test_second_run_reuses_workspace(self, engine, tmp_path):
        ticket = approved_ticket(engine)
        first = engine.execute(ticket.id, str(tmp_path / "work"))
        assert engine.wait(ticket.id, TIMEOUT)

        engine.store.transition(ticket.id, "in_progress")
        second = engine.execute(ticket.id, str(tmp_path / "elsewhere"))
        assert engine.wait(ticket.id, TIMEOUT)

        assert second.worktree_path == first.worktree_path
        assert engine.store.get_by_id(ticket.id).worktree_base_path == str(tmp_path / "work")
        assert not (tmp_path / "elsewhere").exists()

    def test_gate_checked_before_provisioning(self, engine, tmp_path):
        ticket = engine.store.create(make_request())
        with pytest.raises(GateError):
            engine.execute(ticket.id, str(tmp_path / "work"))
        assert not (tmp_path / "work").exists()
        assert engine.store.get_by_id(ticket.id).worktree_base_path is None

    def test_no_base_directory(self, engine):
        ticket = approved_ticket(engine)
        with pytest.raises(GateError, match="base directory"):
            engine.execute(ticket.id)

    def test_unknown_ticket(self, engine):
        with pytest.raises(TicketNotFound):
            engine.execute("nope", "/tmp")

    def test_provisioning_failure(self, engine, tmp_path):
        ticket = approved_ticket(engine, title="!!!")
        with pytest.raises(ProvisioningError):
            engine.execute(ticket.id, str(tmp_path / "work"))
        assert engine.store.get_by_id(ticket.id).worktree_path is None

    def test_any_status_may_execute(self, engine, tmp_path):
        ticket = approved_ticket(engine, status="backlog")
        engine.execute(ticket.id, str(tmp_path / "work"))
        assert engine.wait(ticket.id, TIMEOUT)
        assert engine.store.get_by_id(ticket.id).status == TicketStatus.BACKLOG


class TestStopAndShutdown:
    def test_stop_transitions_once(self, home, tmp_path):
        write_agent(home, """
            import time
            print("## started", flush=True)
            time.sleep(30)
        """)
        engine = LoopEngine.create(home, generator=lambda prompt: "# PRD")
        try:
            ticket = approved_ticket(engine)
            started = threading.Event()
            engine.broadcaster.subscribe(lambda e: e.iteration >= 1 and started.set())
            updates = []
            engine.broadcaster.subscribe_tickets(updates.append)

            engine.execute(ticket.id, str(tmp_path / "work"))
            assert started.wait(TIMEOUT)
            engine.stop(ticket.id)

            assert engine.store.get_by_id(ticket.id).status == TicketStatus.IN_TESTING
            assert engine.wait(ticket.id, TIMEOUT)
            assert len(updates) == 1
        finally:
            engine.shutdown()

    def test_shutdown_stops_runs_and_flushes(self, home, tmp_path):
        write_agent(home, "import time\ntime.sleep(30)\n")
        engine = LoopEngine.create(home, generator=lambda prompt: "# PRD")
        ticket = approved_ticket(engine)
        engine.execute(ticket.id, str(tmp_path / "work"))
        assert engine.supervisor.is_running(ticket.id)

        engine.shutdown()

        assert not engine.supervisor.is_running(ticket.id)
        assert (home / "tickets.json").exists()
        assert engine.wait(ticket.id, TIMEOUT)
