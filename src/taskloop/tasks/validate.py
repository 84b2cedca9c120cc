"""Structural validation of a task table: duplicates, references, cycles, in-flight count."""

from __future__ import annotations

from taskloop import log
from taskloop.errors import (
    CycleDetectedError,
    DuplicateTaskNumberError,
    MissingDependencyError,
    ParseError,
    TaskloopError,
)
from taskloop.resolver import topological_order
from taskloop.tasks.model import TaskTable


def collect_errors(table: TaskTable) -> list[TaskloopError]:
    """Return every structural problem found in *table*, in a stable order."""
    errors: list[TaskloopError] = []

    seen: set[str] = set()
    for t in table.tasks:
        if t.number in seen:
            errors.append(DuplicateTaskNumberError(t.number))
        seen.add(t.number)

    missing = False
    for t in table.tasks:
        for dep in t.dependencies:
            if dep not in seen:
                errors.append(MissingDependencyError(t.number, dep))
                missing = True

    # Cycle detection needs a well-formed graph.
    if not missing and not errors:
        try:
            topological_order(table)
        except CycleDetectedError as e:
            errors.append(e)

    in_flight = [t.number for t in table.tasks if t.in_flight]
    if len(in_flight) > 1:
        errors.append(ParseError(f"more than one task in progress: {', '.join(in_flight)}"))

    return errors


def validate_table(table: TaskTable) -> None:
    """Raise the first structural error in *table*, if any."""
    errors = collect_errors(table)
    if errors:
        raise errors[0]


def validate_and_report(table: TaskTable) -> bool:
    """Log every structural error. Returns ``True`` when the table is valid."""
    errors = collect_errors(table)
    if not errors:
        log.debug(f"Task table valid ({len(table.tasks)} task(s))")
        return True
    log.error("Task table is invalid:")
    for err in errors:
        log.console.print(f"  - {err}")
    return False
