"""Shared fixtures for taskloop tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use taskloop.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from taskloop.agent import AgentReport, ExecutionAgent
from taskloop.io_utils import write_text
from taskloop.tasks.model import Complexity, Phase, Task, TaskTable


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo for testing."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "commit.gpgsign", "false"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path


def _make_task(
    number: str,
    title: str = "",
    phase: Phase = Phase.PENDING,
    dependencies: list[str] | None = None,
    notes: str = "",
    estimated_hours: float | None = None,
    complexity: Complexity = Complexity.MEDIUM,
) -> Task:
    return Task(
        number=number,
        title=title or f"Task {number}",
        phase=phase,
        dependencies=dependencies or [],
        estimated_hours=estimated_hours,
        complexity=complexity,
        notes=notes,
    )


def _make_table(tasks: list[Task]) -> TaskTable:
    return TaskTable(tasks=tasks)


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_table():
    """Factory fixture that creates TaskTable instances."""
    return _make_table


# ── Fake agent ──────────────────────────────────────────────────────


def passing_report(target: Phase) -> AgentReport:
    """A report that satisfies the guard for *target*."""
    match target:
        case Phase.TESTS_WRITTEN:
            return AgentReport(tests_added=True, tests_passed=False)
        case Phase.DONE:
            return AgentReport(tests_passed=True, coverage=0.95)
        case _:
            return AgentReport(tests_passed=True)


class FakeAgent(ExecutionAgent):
    """Returns scripted reports; defaults to a report that passes every guard.

    ``overrides`` maps ``(task number, target phase)`` to a list of reports
    consumed one per call.
    """

    def __init__(self, overrides: dict[tuple[str, Phase], list[AgentReport]] | None = None) -> None:
        self.overrides = overrides or {}
        self.calls: list[tuple[str, Phase, str]] = []

    def perform(self, task: Task, target: Phase, description: str = "") -> AgentReport:
        self.calls.append((task.number, target, description))
        queue = self.overrides.get((task.number, target))
        if queue:
            return queue.pop(0)
        return passing_report(target)


@pytest.fixture
def fake_agent():
    """Factory fixture for :class:`FakeAgent`."""
    return FakeAgent
