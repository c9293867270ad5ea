"""
Agent process supervisor.

Runs the external agent for a ticket inside its workspace and tracks the run:

  execute(ticket)  write PRD to <workspace>/.claude/prd.md, spawn the agent in
                   its own process group, pipe the PRD to stdin
  stdout/stderr    appended to a rolling log capped at max_log_length chars;
                   stdout lines starting with ``` or "## " count as iterations
  exit             run marked not running, terminal status event emitted
  stop(ticket_id)  SIGTERM to the group, SIGKILL after the grace period if
                   the agent is still alive; marked not running immediately

Every status change is reported as on_status(ticket_id, running, iteration).
Process failures never raise: they land in the run log and the terminal event.

One supervisor process owns many concurrent runs, at most one live run per
ticket. Each run uses three short-lived threads (stdout reader, stderr
reader, exit waiter) plus one for feeding stdin. POSIX only (process groups).
"""

import codecs
import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Optional

from loopengine.lib.agents_config import AgentsConfig, get_stage_command
from loopengine.lib.constants import (
    ITERATION_MARKERS,
    KILL_GRACE_SECONDS,
    MAX_LOG_LENGTH,
    PRD_FILE,
)
from loopengine.pm.prd import GateError, require_approved_prd
from loopengine.runner.locking import TicketLocks
from loopengine.tickets.models import Ticket

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, bool, int], None]

READ_CHUNK_SIZE = 4096

# How long exit handling waits for output readers to drain. Bounded because a
# grandchild can keep the pipes open after the agent itself exits.
READER_DRAIN_TIMEOUT = 2.0


def is_iteration_marker(line: str) -> bool:
    """Fenced code block or level-2 heading, ignoring surrounding whitespace."""
    return line.strip().startswith(ITERATION_MARKERS)


def truncate_log(log: str, max_length: int = MAX_LOG_LENGTH) -> str:
    """Keep only the last max_length characters."""
    if len(log) <= max_length:
        return log
    return log[-max_length:]


@dataclass
class RunStatus:
    """Snapshot returned by get_status()."""
    running: bool = False
    iteration: int = 0
    log: str = ""


@dataclass
class RunState:
    """In-memory record of a ticket's latest run. Never deleted, only replaced."""
    worktree_path: Path
    process: Optional[subprocess.Popen] = None
    running: bool = False
    iteration: int = 0
    log: str = ""
    finished: threading.Event = field(default_factory=threading.Event)
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Held across read-and-emit so events for one run reach subscribers in order
    emit_lock: threading.RLock = field(default_factory=threading.RLock)

    def snapshot(self) -> RunStatus:
        with self.lock:
            return RunStatus(running=self.running, iteration=self.iteration, log=self.log)


class AgentProcessSupervisor:
    def __init__(
        self,
        on_status: StatusCallback,
        agents_config: Optional[AgentsConfig] = None,
        prd_file: str = PRD_FILE,
        max_log_length: int = MAX_LOG_LENGTH,
        kill_grace_seconds: float = KILL_GRACE_SECONDS,
    ):
        self.on_status = on_status
        self.agents_config = agents_config or AgentsConfig()
        self.prd_file = prd_file
        self.max_log_length = max_log_length
        self.kill_grace_seconds = kill_grace_seconds

        self._runs: dict[str, RunState] = {}
        self._runs_lock = threading.Lock()
        self._locks = TicketLocks()

    # ── Execution ──────────────────────────────────────────────

    def execute(self, ticket: Ticket) -> None:
        """Start the agent for a ticket.

        No-op (logged) if the ticket already has a live run.

        Raises:
            GateError: If the PRD isn't approved or the workspace isn't set
        """
        prd = require_approved_prd(ticket)
        if not ticket.worktree_path:
            raise GateError(ticket.id, "has no workspace; provision one first")

        ticket_id = ticket.id
        worktree_path = Path(ticket.worktree_path)

        with self._locks.hold(ticket_id):
            existing = self._get_run(ticket_id)
            if existing is not None and existing.running:
                logger.warning(f"[LOOP] {ticket_id}: already running, ignoring execute")
                return

            prd_path = worktree_path / self.prd_file
            prd_path.parent.mkdir(parents=True, exist_ok=True)
            prd_path.write_text(prd.content, encoding="utf-8")
            logger.info(f"[LOOP] {ticket_id}: wrote PRD to {prd_path}")

            cmd = get_stage_command(self.agents_config, "execute", {"worktree": str(worktree_path)})
            state = RunState(worktree_path=worktree_path, running=True)
            with self._runs_lock:
                self._runs[ticket_id] = state

            try:
                proc = subprocess.Popen(
                    cmd,
                    cwd=str(worktree_path),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    start_new_session=True,
                )
            except OSError as e:
                self._emit(ticket_id, True, 0)
                self._spawn_failed(ticket_id, state, e)
                return

            state.process = proc
            self._emit(ticket_id, True, 0)
            logger.info(f"[LOOP] {ticket_id}: spawned {cmd[0]} (pid {proc.pid})")

            self._start_thread(f"stdin-{ticket_id}", self._feed_stdin, ticket_id, proc, prd.content)
            readers = [
                self._start_thread(
                    f"stdout-{ticket_id}", self._pump, proc.stdout,
                    lambda text: self._on_stdout(ticket_id, state, text),
                ),
                self._start_thread(
                    f"stderr-{ticket_id}", self._pump, proc.stderr,
                    lambda text: self._on_stderr(state, text),
                ),
            ]
            self._start_thread(f"wait-{ticket_id}", self._wait_for_exit, ticket_id, state, proc, readers)

    @staticmethod
    def _start_thread(name: str, target, *args) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, name=f"loopengine-{name}", daemon=True)
        thread.start()
        return thread

    def _spawn_failed(self, ticket_id: str, state: RunState, error: OSError) -> None:
        with state.lock:
            state.running = False
            state.process = None
            state.log = truncate_log(state.log + f"\n[ERROR] {error}\n", self.max_log_length)
            iteration = state.iteration
        logger.error(f"[LOOP] {ticket_id}: failed to spawn agent: {error}")
        self._emit(ticket_id, False, iteration)
        state.finished.set()

    # ── Output handling ────────────────────────────────────────

    @staticmethod
    def _feed_stdin(ticket_id: str, proc: subprocess.Popen, content: str) -> None:
        try:
            proc.stdin.write(content.encode("utf-8"))
        except OSError as e:
            # Agent exited or closed stdin before reading everything
            logger.debug(f"[LOOP] {ticket_id}: stdin write stopped: {e}")
        finally:
            try:
                proc.stdin.close()
            except OSError:
                pass

    @staticmethod
    def _pump(stream: IO[bytes], handler: Callable[[str], None]) -> None:
        """Read chunks as they arrive and hand decoded text to handler."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = stream.read1(READ_CHUNK_SIZE)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    handler(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                handler(tail)
        except (OSError, ValueError) as e:
            logger.debug(f"[LOOP] output stream closed: {e}")
        finally:
            stream.close()

    def _on_stdout(self, ticket_id: str, state: RunState, text: str) -> None:
        """Log a stdout chunk and count its marker lines.

        Lines are classified per chunk, so a marker split across two reads is
        seen as two partial lines and may be missed.
        """
        with state.lock:
            state.log = truncate_log(state.log + text, self.max_log_length)

        for line in text.split("\n"):
            if not is_iteration_marker(line):
                continue
            with state.emit_lock:
                with state.lock:
                    state.iteration += 1
                    running = state.running
                    iteration = state.iteration
                self._emit(ticket_id, running, iteration)

    def _on_stderr(self, state: RunState, text: str) -> None:
        with state.lock:
            state.log = truncate_log(state.log + text, self.max_log_length)

    # ── Exit handling ──────────────────────────────────────────

    def _wait_for_exit(
        self,
        ticket_id: str,
        state: RunState,
        proc: subprocess.Popen,
        readers: list[threading.Thread],
    ) -> None:
        returncode = proc.wait()
        for reader in readers:
            reader.join(timeout=READER_DRAIN_TIMEOUT)

        with self._locks.hold(ticket_id), state.emit_lock:
            with state.lock:
                state.running = False
                if state.process is proc:
                    state.process = None
                if returncode < 0:
                    state.log = truncate_log(
                        state.log + f"\n[ERROR] agent terminated by {_signal_name(-returncode)}\n",
                        self.max_log_length,
                    )
                elif returncode > 0:
                    state.log = truncate_log(
                        state.log + f"\n[ERROR] agent exited with code {returncode}\n",
                        self.max_log_length,
                    )
                iteration = state.iteration

            if self._get_run(ticket_id) is not state:
                logger.warning(f"[LOOP] {ticket_id}: superseded run (pid {proc.pid}) exited")

            logger.info(f"[LOOP] {ticket_id}: process exited (code {returncode})")
            self._emit(ticket_id, False, iteration)
        state.finished.set()

    # ── Status query ───────────────────────────────────────────

    def _get_run(self, ticket_id: str) -> Optional[RunState]:
        with self._runs_lock:
            return self._runs.get(ticket_id)

    def get_status(self, ticket_id: str) -> RunStatus:
        """Current (or last) run status; defaults when the ticket never ran."""
        state = self._get_run(ticket_id)
        if state is None:
            return RunStatus()
        return state.snapshot()

    def is_running(self, ticket_id: str) -> bool:
        state = self._get_run(ticket_id)
        return state is not None and state.snapshot().running

    def running_ticket_ids(self) -> list[str]:
        with self._runs_lock:
            states = list(self._runs.items())
        return [ticket_id for ticket_id, state in states if state.snapshot().running]

    def wait(self, ticket_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the ticket's latest run has exited.

        Returns True if it exited (or never ran), False on timeout.
        """
        state = self._get_run(ticket_id)
        if state is None:
            return True
        return state.finished.wait(timeout)

    # ── Stop ───────────────────────────────────────────────────

    def stop(self, ticket_id: str) -> None:
        """Request termination of a ticket's run.

        The run is reported as stopped immediately; the process itself dies
        asynchronously (SIGTERM now, SIGKILL after the grace period).
        """
        with self._locks.hold(ticket_id):
            state = self._get_run(ticket_id)
            if state is None or not state.running or state.process is None:
                logger.warning(f"[LOOP] {ticket_id}: nothing to stop")
                return

            proc = state.process
            self._signal_group(ticket_id, proc.pid, signal.SIGTERM)

            timer = threading.Timer(self.kill_grace_seconds, self._escalate, args=(ticket_id, proc))
            timer.daemon = True
            timer.start()

            with state.emit_lock:
                with state.lock:
                    state.running = False
                    state.process = None
                    iteration = state.iteration

                logger.info(f"[LOOP] {ticket_id}: stop requested")
                self._emit(ticket_id, False, iteration)

    def stop_all(self) -> None:
        for ticket_id in self.running_ticket_ids():
            self.stop(ticket_id)

    def _escalate(self, ticket_id: str, proc: subprocess.Popen) -> None:
        if proc.poll() is None:
            logger.info(f"[LOOP] {ticket_id}: still alive after {self.kill_grace_seconds}s, sending SIGKILL")
            self._signal_group(ticket_id, proc.pid, signal.SIGKILL)

    @staticmethod
    def _signal_group(ticket_id: str, pid: int, sig: signal.Signals) -> None:
        try:
            os.killpg(pid, sig)
        except (ProcessLookupError, PermissionError):
            # Already gone, or no longer ours to signal
            pass
        except OSError as e:
            logger.error(f"[LOOP] {ticket_id}: {sig.name} failed: {e}")

    # ── Events ─────────────────────────────────────────────────

    def _emit(self, ticket_id: str, running: bool, iteration: int) -> None:
        try:
            self.on_status(ticket_id, running, iteration)
        except Exception:
            logger.exception(f"[LOOP] {ticket_id}: status callback failed")


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"
