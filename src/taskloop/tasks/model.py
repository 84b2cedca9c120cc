"""Task and TaskTable data models used across loading, scheduling and execution."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum


class Status(str, Enum):
    """Externally visible task status, as persisted in the ``status`` column."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"


class Phase(str, Enum):
    """Refined per-task phase. Declaration order is the canonical order."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    TESTS_WRITTEN = "tests-written"
    IMPLEMENTATION_WRITTEN = "implementation-written"
    REFACTORED = "refactored"
    DONE = "done"

    @property
    def index(self) -> int:
        return PHASE_ORDER.index(self)

    @property
    def status(self) -> Status:
        if self is Phase.PENDING:
            return Status.PENDING
        if self is Phase.DONE:
            return Status.DONE
        return Status.IN_PROGRESS


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


NUMBER_RE = re.compile(r"^(\d+)\.(\d+)$")

_BLOCKED_RE = re.compile(r"\s*\[blocked: (?P<reason>[^\]]*)\]\s*$")


def number_key(number: str) -> tuple[int, int]:
    """Sort key for a ``major.minor`` task number: major ascending, then minor.

    Raises ``ValueError`` for anything that is not two dot-separated integers.
    """
    m = NUMBER_RE.match(number)
    if not m:
        raise ValueError(f"Invalid task number: {number!r} (expected major.minor, e.g. 2.3)")
    return int(m.group(1)), int(m.group(2))


@dataclass
class Task:
    number: str
    title: str = ""
    phase: Phase = Phase.PENDING
    dependencies: list[str] = field(default_factory=list)
    estimated_hours: float | None = None
    complexity: Complexity = Complexity.MEDIUM
    notes: str = ""

    @property
    def status(self) -> Status:
        return self.phase.status

    @property
    def key(self) -> tuple[int, int]:
        return number_key(self.number)

    @property
    def in_flight(self) -> bool:
        return self.status is Status.IN_PROGRESS

    @property
    def blocked_reason(self) -> str:
        """Reason from the ``[blocked: ...]`` marker in notes, or ``""``."""
        m = _BLOCKED_RE.search(self.notes)
        return m.group("reason") if m else ""

    def with_blocker(self, reason: str) -> str:
        """Return notes with the blocked marker set to *reason* (replacing any old one)."""
        base = self.notes_without_blocker()
        reason = " ".join(reason.replace("[", "(").replace("]", ")").split())
        marker = f"[blocked: {reason}]"
        return f"{base} {marker}" if base else marker

    def notes_without_blocker(self) -> str:
        return _BLOCKED_RE.sub("", self.notes).strip()


@dataclass
class TaskTable:
    tasks: list[Task] = field(default_factory=list)

    def get(self, number: str) -> Task | None:
        for t in self.tasks:
            if t.number == number:
                return t
        return None

    def numbers(self) -> list[str]:
        return [t.number for t in self.tasks]

    def sorted_tasks(self) -> list[Task]:
        return sorted(self.tasks, key=lambda t: t.key)

    def in_flight(self) -> Task | None:
        """Return the task currently between ``in-progress`` and ``done``, if any."""
        for t in self.sorted_tasks():
            if t.in_flight:
                return t
        return None

    def count(self, status: Status) -> int:
        return sum(1 for t in self.tasks if t.status is status)

    def all_done(self) -> bool:
        return all(t.status is Status.DONE for t in self.tasks)
