"""Exception hierarchy for the task orchestrator.

Everything except :class:`ValidationFailure` is structural and halts a
session. ``ValidationFailure`` means a phase guard was not met; the task stays
where it is and the same phase is retried on the next step.
"""

from __future__ import annotations


class TaskloopError(Exception):
    """Base class for all orchestrator errors."""


class ParseError(TaskloopError):
    """A persisted task row is malformed."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class TaskCountMismatch(TaskloopError):
    """The plan document and the task store disagree on which tasks exist."""

    def __init__(self, document_count: int, store_count: int, detail: str = "") -> None:
        self.document_count = document_count
        self.store_count = store_count
        msg = f"Plan lists {document_count} task(s) but the store has {store_count}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class DuplicateTaskNumberError(TaskloopError):
    def __init__(self, number: str) -> None:
        self.number = number
        super().__init__(f"Duplicate task number: {number}")


class MissingDependencyError(TaskloopError):
    def __init__(self, number: str, dependency: str) -> None:
        self.number = number
        self.dependency = dependency
        super().__init__(f"Task {number}: dependency '{dependency}' not found")


class CycleDetectedError(TaskloopError):
    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Cycle detected: {' -> '.join(cycle)}")


class TaskNotFoundError(TaskloopError):
    def __init__(self, number: str) -> None:
        self.number = number
        super().__init__(f"Task not found: {number}")


class InvalidTransitionError(TaskloopError):
    def __init__(self, number: str, current: str, requested: str) -> None:
        self.number = number
        self.current = current
        self.requested = requested
        super().__init__(f"Task {number}: cannot move from {current} to {requested}")


class StoreIOError(TaskloopError, OSError):
    """The task table cannot be read or written."""


class CommitError(TaskloopError):
    """The version-control sink rejected a commit request."""

    def __init__(self, message: str) -> None:
        self.commit_message = message
        super().__init__(f"Commit failed: {message}")


class ValidationFailure(TaskloopError):
    """A phase guard was not satisfied. Recoverable: retry the same phase."""

    def __init__(self, number: str, phase: str, reason: str) -> None:
        self.number = number
        self.phase = phase
        self.reason = reason
        super().__init__(f"Task {number} ({phase}): {reason}")


class CommitOrderError(TaskloopError):
    """A task's commit history does not match its persisted phase."""

    def __init__(self, number: str, detail: str) -> None:
        self.number = number
        super().__init__(f"Task {number}: {detail}")
