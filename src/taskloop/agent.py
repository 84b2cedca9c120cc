"""Execution agents: whatever actually writes the tests and code for a phase.

The orchestrator never looks at code or test content. It asks an agent to
perform a phase and gets back an :class:`AgentReport` of facts (were tests
added, do they pass, what is coverage) that the phase guards judge.
"""

from __future__ import annotations

import re
import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from taskloop import log
from taskloop.engine_errors import classify_failure
from taskloop.engines.base import EngineBase, EngineRequest
from taskloop.git_ops import dirty_worktree_entries
from taskloop.tasks.model import Phase, Task


@dataclass
class AgentReport:
    """Structured pass/fail signals for one phase attempt."""

    tests_added: bool = False
    tests_passed: bool | None = None
    coverage: float | None = None
    behavior_changed: bool = False
    message: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class ExecutionAgent(ABC):
    @abstractmethod
    def perform(self, task: Task, target: Phase, description: str = "") -> AgentReport:
        """Do the work that moves *task* into *target* and report the outcome."""
        ...


_PHASE_INSTRUCTIONS: dict[Phase, str] = {
    Phase.TESTS_WRITTEN: (
        "Write NEW automated tests that specify the behavior of this task.\n"
        "Do NOT implement the feature. The new tests MUST fail against the current code."
    ),
    Phase.IMPLEMENTATION_WRITTEN: (
        "Implement the task so that all tests pass.\n"
        "Write the minimum code needed. Do NOT weaken or delete the tests."
    ),
    Phase.REFACTORED: (
        "Refactor the code written for this task for clarity and consistency.\n"
        "Do NOT change behavior. All tests must still pass."
    ),
}


def build_phase_prompt(task: Task, target: Phase, description: str = "") -> str:
    details = description.strip() or "(no description)"
    return f"""You are working on a specific task. Focus ONLY on this task:

TASK NUMBER: {task.number}
TASK: {task.title}
DETAILS:
{details}

CURRENT STEP: {target.value}
{_PHASE_INSTRUCTIONS[target]}

CRITICAL RULES:
- Do NOT commit. Do NOT edit tasks.csv.
- Do NOT work on any other task.

Focus only on: {task.title}"""


_TEST_PATH_RE = re.compile(r"(^|/)(tests?/|test_[^/]*$|[^/]*_test\.[^/]+$|[^/]*\.(spec|test)\.[^/]+$)")
_COVERAGE_RE = re.compile(r"^TOTAL\s+.*?(\d+(?:\.\d+)?)%\s*$", re.MULTILINE)


def parse_coverage(output: str) -> float | None:
    """Total coverage fraction from a coverage.py / pytest-cov report, or ``None``."""
    matches = _COVERAGE_RE.findall(output or "")
    if not matches:
        return None
    return float(matches[-1]) / 100.0


def changed_test_files(cwd: Path | None = None) -> list[str]:
    files: list[str] = []
    for entry in dirty_worktree_entries(cwd=cwd):
        path = entry.split(maxsplit=1)[-1].split(" -> ")[-1].strip('"')
        if _TEST_PATH_RE.search(path):
            files.append(path)
    return files


def run_command(cmd: str, *, cwd: Path | None = None, timeout: int | None = None) -> tuple[int | None, str]:
    """Run a shell-style command. Returns ``(returncode, combined output)``; ``None`` if it could not start."""
    try:
        proc = subprocess.run(
            shlex.split(cmd),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            cwd=cwd,
            timeout=timeout,
        )
    except FileNotFoundError:
        return None, f"{cmd.split()[0]} not found"
    except OSError as e:
        return None, f"{cmd.split()[0]}: {e.strerror or e}"
    except subprocess.TimeoutExpired:
        return None, f"'{cmd}' timed out"
    return proc.returncode, (proc.stdout or "") + (proc.stderr or "")


class EngineAgent(ExecutionAgent):
    """Drives a coding CLI engine for the writing phases, then runs the test command.

    The final ``done`` step runs only the coverage command; no engine call.
    """

    def __init__(
        self,
        engine: EngineBase,
        *,
        test_cmd: str,
        coverage_cmd: str,
        cwd: Path | None = None,
        timeout: int | None = None,
        log_file: Path | None = None,
    ) -> None:
        self.engine = engine
        self.test_cmd = test_cmd
        self.coverage_cmd = coverage_cmd
        self.cwd = cwd
        self.timeout = timeout
        self.log_file = log_file

    def perform(self, task: Task, target: Phase, description: str = "") -> AgentReport:
        if target is Phase.DONE:
            return self._measure_coverage()
        if target not in _PHASE_INSTRUCTIONS:
            return AgentReport(tests_passed=None, message=f"nothing to do for {target.value}")

        log.info(f"{self.engine.name}: task {task.number} -> {target.value}")
        request = EngineRequest(task.number, target, build_phase_prompt(task, target, description))
        result = self.engine.run(request, cwd=self.cwd, log_file=self.log_file, timeout=self.timeout)
        if result.error:
            label = classify_failure(result.error)
            return AgentReport(
                message=f"{self.engine.name} failed ({label}): {result.error}",
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
            )

        tests_added = bool(changed_test_files(cwd=self.cwd)) if target is Phase.TESTS_WRITTEN else False
        code, output = run_command(self.test_cmd, cwd=self.cwd, timeout=self.timeout)
        message = "" if code is not None else output
        if code is not None and code != 0 and target is not Phase.TESTS_WRITTEN:
            message = _last_line(output)
        return AgentReport(
            tests_added=tests_added,
            tests_passed=None if code is None else code == 0,
            message=message,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )

    def _measure_coverage(self) -> AgentReport:
        code, output = run_command(self.coverage_cmd, cwd=self.cwd, timeout=self.timeout)
        if code is None:
            return AgentReport(message=output)
        coverage = parse_coverage(output)
        message = "" if coverage is not None else "coverage report not found in output"
        if code != 0:
            message = _last_line(output)
        return AgentReport(tests_passed=code == 0, coverage=coverage, message=message)


def _last_line(output: str) -> str:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    return lines[-1] if lines else ""
