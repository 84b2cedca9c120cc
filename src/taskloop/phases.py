"""Per-task phase state machine: legal order and transition guards.

Order::

    pending -> in-progress -> tests-written -> implementation-written -> refactored -> done

Transitions are forward-only and one step at a time. Guards look only at the
structured :class:`~taskloop.agent.AgentReport` an execution agent returns;
they never inspect code or tests themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

from taskloop.errors import InvalidTransitionError, ValidationFailure
from taskloop.resolver import ready_tasks, unmet_dependencies
from taskloop.tasks.model import PHASE_ORDER, Phase, Task, TaskTable

if TYPE_CHECKING:
    from taskloop.agent import AgentReport


def next_phase(phase: Phase) -> Phase | None:
    """The phase after *phase*, or ``None`` for ``done``."""
    idx = phase.index
    if idx + 1 >= len(PHASE_ORDER):
        return None
    return PHASE_ORDER[idx + 1]


def check_transition(number: str, current: Phase, target: Phase) -> None:
    """Raise :class:`InvalidTransitionError` unless *target* directly follows *current*."""
    if next_phase(current) is not target:
        raise InvalidTransitionError(number, current.value, target.value)


class PhaseStateMachine:
    """Guards for each forward transition.

    ``coverage_threshold`` is a fraction (0.8 means 80%) and only applies to
    the final ``refactored -> done`` step.
    """

    def __init__(self, coverage_threshold: float = 0.80) -> None:
        self.coverage_threshold = coverage_threshold

    def target_for(self, task: Task) -> Phase | None:
        return next_phase(task.phase)

    def check_start(self, table: TaskTable, task: Task) -> None:
        """Guard for ``pending -> in-progress``: the task must be ready."""
        check_transition(task.number, task.phase, Phase.IN_PROGRESS)
        if task.number not in ready_tasks(table):
            unmet = unmet_dependencies(table, task.number)
            raise ValidationFailure(
                task.number,
                Phase.IN_PROGRESS.value,
                f"waiting for: {', '.join(unmet)}",
            )

    def check_guard(self, task: Task, target: Phase, report: AgentReport) -> None:
        """Raise :class:`ValidationFailure` when *report* does not satisfy the guard."""
        check_transition(task.number, task.phase, target)

        def fail(reason: str) -> NoReturn:
            if report.message:
                reason = f"{reason}: {report.message}"
            raise ValidationFailure(task.number, target.value, reason)

        match target:
            case Phase.TESTS_WRITTEN:
                if not report.tests_added:
                    fail("no new tests were added")
                if report.tests_passed is None:
                    fail("no test result reported")
                if report.tests_passed:
                    fail("new tests pass before implementation; they must fail first")
            case Phase.IMPLEMENTATION_WRITTEN:
                if not report.tests_passed:
                    fail("tests still fail after implementation")
            case Phase.REFACTORED:
                if not report.tests_passed:
                    fail("tests fail after refactor")
                if report.behavior_changed:
                    fail("refactor changed behavior")
            case Phase.DONE:
                if not report.tests_passed:
                    fail("full test suite does not pass")
                if report.coverage is None:
                    fail("no coverage measurement available")
                elif report.coverage < self.coverage_threshold:
                    fail(
                        f"coverage {report.coverage:.0%} is below "
                        f"{self.coverage_threshold:.0%}"
                    )
            case Phase.IN_PROGRESS:
                pass
            case _:
                raise InvalidTransitionError(task.number, task.phase.value, target.value)
