"""Execution loop: one phase transition per step, persisted before the next.

``ExecutionLoop.run_once`` is the unit of progress. A driver calls it
repeatedly (``run_session``) and may stop after any call; because the store is
saved after every transition, reloading it resumes exactly where it stopped.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field

from taskloop import log
from taskloop.agent import ExecutionAgent
from taskloop.commits import (
    commits_for,
    expected_kinds,
    is_canonical_prefix,
    kinds_from_subjects,
    next_commit,
)
from taskloop.errors import (
    CommitError,
    CommitOrderError,
    InvalidTransitionError,
    TaskloopError,
    ValidationFailure,
)
from taskloop.git_ops import VersionControlSink
from taskloop.phases import PhaseStateMachine, next_phase
from taskloop.plan import DocumentSource
from taskloop.resolver import explain_block, ready_tasks, select_next, unmet_dependencies
from taskloop.tasks.model import Phase, Status, Task, TaskTable
from taskloop.tasks.store import TaskStore


# ── Outcomes ─────────────────────────────────────────────────────────

class SessionOutcome:
    """Result of one ``run_once`` step."""


@dataclass
class Advanced(SessionOutcome):
    task: str
    phase: Phase


@dataclass
class Blocked(SessionOutcome):
    task: str
    reason: str
    waiting_for: list[str] = field(default_factory=list)
    validation: bool = False
    phase: Phase | None = None


@dataclass
class AllComplete(SessionOutcome):
    pass


@dataclass
class Fatal(SessionOutcome):
    error: Exception


# ── Loop ─────────────────────────────────────────────────────────────

def preflight(store: TaskStore, source: DocumentSource) -> TaskTable:
    """Load-time gates: parse and validate the store, then match it against the plan.

    Any failure raises before a single step has run.
    """
    table = store.load()
    store.check_against(source.items())
    return table


class ExecutionLoop:
    """Drives the in-flight task (or the next ready one) forward by one phase."""

    def __init__(
        self,
        agent: ExecutionAgent,
        sink: VersionControlSink,
        *,
        machine: PhaseStateMachine | None = None,
        descriptions: dict[str, str] | None = None,
    ) -> None:
        self.agent = agent
        self.sink = sink
        self.machine = machine or PhaseStateMachine()
        self.descriptions = descriptions or {}
        self.total_input_tokens = 0
        self.total_output_tokens = 0

    def run_once(self, store: TaskStore) -> SessionOutcome:
        try:
            self._resend_owed_commits(store.table)
            return self._step(store)
        except TaskloopError as e:
            log.error(str(e))
            return Fatal(e)
        except (OSError, subprocess.SubprocessError) as e:
            # Agent or sink could not run at all (missing permissions, broken binary).
            log.error(f"{type(e).__name__}: {e}")
            return Fatal(e)

    def _resend_owed_commits(self, table: TaskTable) -> None:
        """Bring each started task's commit history up to its persisted phase.

        The store is saved before commits go out, so a rejected or interrupted
        commit leaves the phase ahead of the history. Tasks finished without
        any commit of their own are left alone.
        """
        if not self.sink.tracks_history:
            return
        subjects = self.sink.subjects()
        for task in table.sorted_tasks():
            if task.status is Status.PENDING:
                continue
            emitted = kinds_from_subjects(task, subjects)
            if task.status is Status.DONE and not emitted:
                continue
            expected = expected_kinds(task.phase)
            if not is_canonical_prefix(emitted) or len(emitted) > len(expected):
                shown = ", ".join(k.value for k in emitted)
                raise CommitOrderError(
                    task.number,
                    f"commit history ({shown or 'none'}) does not fit phase {task.phase.value}",
                )
            while len(emitted) < len(expected):
                record = next_commit(task, emitted, self.descriptions.get(task.number, ""))
                log.warn(f"Task {task.number}: re-sending missing commit '{record.subject}'")
                if not self.sink.commit(record.message):
                    raise CommitError(record.message)
                emitted.append(record.kind)

    def _step(self, store: TaskStore) -> SessionOutcome:
        table = store.table
        current = table.in_flight()

        if current is None:
            ready = ready_tasks(table)
            if not ready:
                if table.all_done():
                    return AllComplete()
                return self._blocked_on_dependencies(table)
            task = store.get(select_next(ready))
            try:
                self.machine.check_start(table, task)
            except ValidationFailure as e:
                return Blocked(task.number, e.reason, validation=True, phase=Phase.IN_PROGRESS)
            return self._advance(store, task, Phase.IN_PROGRESS)

        target = next_phase(current.phase)
        if target is None:
            raise InvalidTransitionError(current.number, current.phase.value, "a later phase")
        report = self.agent.perform(current, target, self.descriptions.get(current.number, ""))
        self.total_input_tokens += report.input_tokens
        self.total_output_tokens += report.output_tokens

        try:
            self.machine.check_guard(current, target, report)
        except ValidationFailure as e:
            log.warn(f"Task {current.number}: {target.value} not reached: {e.reason}")
            store.mark_blocked(current.number, e.reason)
            store.save()
            return Blocked(current.number, e.reason, validation=True, phase=target)

        return self._advance(store, current, target)

    def _advance(self, store: TaskStore, task: Task, target: Phase) -> Advanced:
        store.update_status(task.number, target)
        store.clear_blocked(task.number)
        store.save()
        for record in commits_for(task, target, self.descriptions.get(task.number, "")):
            if not self.sink.commit(record.message):
                raise CommitError(record.message)
        log.success(f"Task {task.number}: {target.value}")
        return Advanced(task.number, target)

    @staticmethod
    def _blocked_on_dependencies(table: TaskTable) -> Blocked:
        for t in table.sorted_tasks():
            if t.status is Status.DONE:
                continue
            unmet = unmet_dependencies(table, t.number)
            if unmet:
                log.warn(f"Task {t.number}: {explain_block(table, t.number)}")
                return Blocked(t.number, f"waiting for: {', '.join(unmet)}", waiting_for=unmet)
        # Unreachable for a validated table; kept so the loop never spins.
        pending = [t.number for t in table.sorted_tasks() if t.status is not Status.DONE]
        return Blocked(pending[0], "no task is ready")


# ── Session driver ───────────────────────────────────────────────────

@dataclass
class SessionReport:
    outcomes: list[SessionOutcome] = field(default_factory=list)
    stop_reason: str = ""

    @property
    def last(self) -> SessionOutcome | None:
        return self.outcomes[-1] if self.outcomes else None

    @property
    def advanced(self) -> list[Advanced]:
        return [o for o in self.outcomes if isinstance(o, Advanced)]

    @property
    def completed_tasks(self) -> list[str]:
        return [o.task for o in self.advanced if o.phase is Phase.DONE]

    @property
    def ok(self) -> bool:
        return not isinstance(self.last, Fatal)


def run_session(
    loop: ExecutionLoop,
    store: TaskStore,
    *,
    max_steps: int = 0,
    max_attempts: int = 3,
) -> SessionReport:
    """Call ``run_once`` until complete, fatal, dependency-blocked or out of attempts.

    A validation failure is retried on the next step; after *max_attempts*
    consecutive failures of the same phase the session stops.
    """
    report = SessionReport()
    attempts = 0
    last_failed: tuple[str, Phase | None] | None = None

    while True:
        if max_steps > 0 and len(report.outcomes) >= max_steps:
            log.warn(f"Reached max steps ({max_steps})")
            report.stop_reason = "max-steps"
            break

        outcome = loop.run_once(store)
        report.outcomes.append(outcome)

        if isinstance(outcome, AllComplete):
            report.stop_reason = "complete"
            break
        if isinstance(outcome, Fatal):
            report.stop_reason = "fatal"
            break
        if isinstance(outcome, Blocked):
            if not outcome.validation:
                report.stop_reason = "blocked"
                break
            key = (outcome.task, outcome.phase)
            attempts = attempts + 1 if key == last_failed else 1
            last_failed = key
            if attempts >= max_attempts:
                log.warn(f"Task {outcome.task}: giving up after {attempts} attempt(s)")
                report.stop_reason = "validation"
                break
            log.info(f"Retrying task {outcome.task} (attempt {attempts + 1}/{max_attempts})")
            continue
        attempts = 0
        last_failed = None

    return report
