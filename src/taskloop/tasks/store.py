"""TaskStore: the sole owner of the persisted task table.

Mutations are in-memory until :meth:`TaskStore.save` rewrites the whole file
atomically. There is no autosave; the execution loop saves after every
transition it makes.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from taskloop import log
from taskloop.errors import (
    DuplicateTaskNumberError,
    InvalidTransitionError,
    TaskCountMismatch,
    TaskNotFoundError,
)
from taskloop.phases import check_transition
from taskloop.plan import PlanItem
from taskloop.tasks.io import load_task_table, save_task_table
from taskloop.tasks.model import Phase, Task, TaskTable, number_key
from taskloop.tasks.validate import validate_table


class TaskStore:
    """Load/mutate/save transaction boundary around one task table file.

    Usage::

        store = TaskStore(Path("tasks.csv"))
        table = store.load()                  # parse + structural validation
        store.update_status("1.1", Phase.IN_PROGRESS)
        store.save()                          # atomic whole-file replace
    """

    def __init__(self, path: Path, table: TaskTable | None = None) -> None:
        self.path = path
        self._table = table

    @property
    def table(self) -> TaskTable:
        if self._table is None:
            return self.load()
        return self._table

    def exists(self) -> bool:
        return self.path.is_file()

    # ── persistence ──────────────────────────────────────────────

    def load(self) -> TaskTable:
        """Read and validate the table from disk, replacing any in-memory state."""
        table = load_task_table(self.path)
        validate_table(table)
        self._table = table
        log.debug(f"Loaded {len(table.tasks)} task(s) from {self.path}")
        return table

    def save(self, table: TaskTable | None = None) -> None:
        if table is not None:
            self._table = table
        save_task_table(self.path, self.table)
        log.debug(f"Saved {len(self.table.tasks)} task(s) to {self.path}")

    def initialize(self, items: Iterable[PlanItem]) -> TaskTable:
        """Build a fresh table from plan *items* (all pending). Does not save."""
        table = TaskTable()
        self._table = table
        for item in items:
            self.append(item.to_task())
        validate_table(table)
        return table

    # ── queries ──────────────────────────────────────────────────

    def get(self, number: str) -> Task:
        task = self.table.get(number)
        if task is None:
            raise TaskNotFoundError(number)
        return task

    def check_against(self, items: Iterable[PlanItem]) -> None:
        """Require a 1:1 correspondence between plan items and stored tasks."""
        doc_numbers = [i.number for i in items]
        store_numbers = self.table.numbers()
        if len(doc_numbers) != len(store_numbers):
            raise TaskCountMismatch(len(doc_numbers), len(store_numbers))
        only_doc = sorted(set(doc_numbers) - set(store_numbers), key=number_key)
        only_store = sorted(set(store_numbers) - set(doc_numbers), key=number_key)
        if only_doc or only_store:
            detail = []
            if only_doc:
                detail.append(f"only in plan: {', '.join(only_doc)}")
            if only_store:
                detail.append(f"only in store: {', '.join(only_store)}")
            raise TaskCountMismatch(len(doc_numbers), len(store_numbers), "; ".join(detail))

    # ── mutations ────────────────────────────────────────────────

    def append(self, task: Task) -> None:
        number_key(task.number)
        if self.table.get(task.number) is not None:
            raise DuplicateTaskNumberError(task.number)
        self.table.tasks.append(task)

    def update_status(self, number: str, new_phase: Phase) -> None:
        """Advance *number* to *new_phase*; only the next phase in order is accepted."""
        task = self.get(number)
        check_transition(number, task.phase, new_phase)
        if new_phase is Phase.IN_PROGRESS:
            other = self.table.in_flight()
            if other is not None and other.number != number:
                raise InvalidTransitionError(
                    number,
                    task.phase.value,
                    f"{new_phase.value} (task {other.number} is already in progress)",
                )
        task.phase = new_phase
        log.debug(f"Task {number}: -> {new_phase.value}")

    def mark_blocked(self, number: str, reason: str) -> None:
        task = self.get(number)
        task.notes = task.with_blocker(reason)

    def clear_blocked(self, number: str) -> bool:
        """Drop the blocked marker. Returns ``True`` if there was one."""
        task = self.get(number)
        if not task.blocked_reason:
            return False
        task.notes = task.notes_without_blocker()
        return True
