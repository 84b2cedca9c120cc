"""Canonical commit sequence for a task.

Every task emits the same six commits, in order::

    1. Update: task 1.2 status to in-progress
    2. Test: Add tests for task 1.2
    3. Feat/Fix: Implement task 1.2
    4. Refactor: Clean up task 1.2
    5. Update: task 1.2 status to done
    6. Task 1.2: <title>

Commits are handed to an external version-control sink, so the ordering is
also checkable after the fact from commit subjects (:func:`kinds_from_subjects`
and :func:`is_canonical_prefix`).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from taskloop.tasks.model import Phase, Task


class CommitKind(str, Enum):
    STATUS_IN_PROGRESS = "status-in-progress"
    TESTS = "tests"
    IMPLEMENT = "implement"
    REFACTOR = "refactor"
    STATUS_DONE = "status-done"
    COMPLETE = "complete"


CANONICAL_SEQUENCE: tuple[CommitKind, ...] = tuple(CommitKind)

TEMPLATES: dict[CommitKind, str] = {
    CommitKind.STATUS_IN_PROGRESS: "Update: task {number} status to in-progress",
    CommitKind.TESTS: "Test: Add tests for task {number}",
    CommitKind.IMPLEMENT: "Feat/Fix: Implement task {number}",
    CommitKind.REFACTOR: "Refactor: Clean up task {number}",
    CommitKind.STATUS_DONE: "Update: task {number} status to done",
    CommitKind.COMPLETE: "Task {number}: {title}",
}

PHASE_COMMITS: dict[Phase, tuple[CommitKind, ...]] = {
    Phase.IN_PROGRESS: (CommitKind.STATUS_IN_PROGRESS,),
    Phase.TESTS_WRITTEN: (CommitKind.TESTS,),
    Phase.IMPLEMENTATION_WRITTEN: (CommitKind.IMPLEMENT,),
    Phase.REFACTORED: (CommitKind.REFACTOR,),
    Phase.DONE: (CommitKind.STATUS_DONE, CommitKind.COMPLETE),
}


@dataclass(frozen=True)
class CommitRecord:
    task_number: str
    kind: CommitKind
    message: str

    @property
    def subject(self) -> str:
        return self.message.splitlines()[0] if self.message else ""


def render(task: Task, kind: CommitKind, description: str = "") -> CommitRecord:
    """Fill the template for *kind*. The completion commit carries *description* as its body."""
    message = TEMPLATES[kind].format(number=task.number, title=task.title)
    if kind is CommitKind.COMPLETE and description.strip():
        message = f"{message}\n\n{description.strip()}"
    return CommitRecord(task_number=task.number, kind=kind, message=message)


def commits_for(task: Task, target: Phase, description: str = "") -> list[CommitRecord]:
    """Commits required when *task* enters *target* (two for ``done``)."""
    kinds = PHASE_COMMITS.get(target, ())
    return [render(task, kind, description) for kind in kinds]


def next_commit(
    task: Task, emitted: list[CommitKind], description: str = ""
) -> CommitRecord | None:
    """The next canonical commit after *emitted*, or ``None`` once all six are out.

    Raises ``ValueError`` if *emitted* is not itself a canonical prefix.
    """
    if not is_canonical_prefix(emitted):
        raise ValueError(
            f"Task {task.number}: commit history {[k.value for k in emitted]} "
            "is out of canonical order"
        )
    if len(emitted) >= len(CANONICAL_SEQUENCE):
        return None
    return render(task, CANONICAL_SEQUENCE[len(emitted)], description)


def expected_kinds(phase: Phase) -> list[CommitKind]:
    """Kinds that must have been emitted once a task has reached *phase*."""
    kinds: list[CommitKind] = []
    for p, ks in PHASE_COMMITS.items():
        if p.index <= phase.index:
            kinds.extend(ks)
    return kinds


def is_canonical_prefix(kinds: list[CommitKind]) -> bool:
    return list(kinds) == list(CANONICAL_SEQUENCE[: len(kinds)])


def classify(task: Task, subject: str) -> CommitKind | None:
    """Map a commit subject back to its kind for *task*, or ``None`` if unrelated."""
    subject = subject.strip()
    for kind in CANONICAL_SEQUENCE:
        if subject == render(task, kind).subject:
            return kind
    return None


def kinds_from_subjects(task: Task, subjects: list[str]) -> list[CommitKind]:
    """Kinds for *task* found in *subjects* (oldest first), ignoring unrelated commits."""
    kinds: list[CommitKind] = []
    for s in subjects:
        kind = classify(task, s)
        if kind is not None:
            kinds.append(kind)
    return kinds
