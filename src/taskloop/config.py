"""Configuration defaults, env vars, and runtime options for taskloop."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path


DEFAULT_TASKS_FILE = "tasks.csv"
DEFAULT_PLAN_FILE = "TASKS.md"
DEFAULT_COMMAND = "/execute-tasks"
DEFAULT_COVERAGE_THRESHOLD = 0.80
DEFAULT_TEST_CMD = "pytest -q"
DEFAULT_COVERAGE_CMD = "pytest -q --cov --cov-report=term"


@dataclass
class Config:
    """Runtime configuration. Empty string fields fall back to env vars, then defaults."""

    # Files
    tasks_file: str = ""
    plan_file: str = ""

    # Agent
    ai_engine: str = "claude"
    model: str = ""
    test_cmd: str = ""
    coverage_cmd: str = ""
    agent_timeout: int = 1800

    # Phase guards
    coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD

    # Session
    max_steps: int = 0
    max_attempts: int = 3
    commit: bool = True
    dry_run: bool = False
    command: str = ""

    # Misc
    artifacts_dir: str = "artifacts"
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.tasks_file:
            self.tasks_file = os.environ.get("TASKLOOP_TASKS_FILE") or DEFAULT_TASKS_FILE
        if not self.plan_file:
            self.plan_file = os.environ.get("TASKLOOP_PLAN_FILE") or DEFAULT_PLAN_FILE
        if not self.test_cmd:
            self.test_cmd = os.environ.get("TASKLOOP_TEST_CMD") or DEFAULT_TEST_CMD
        if not self.coverage_cmd:
            self.coverage_cmd = os.environ.get("TASKLOOP_COVERAGE_CMD") or DEFAULT_COVERAGE_CMD
        if not self.model:
            self.model = os.environ.get("TASKLOOP_MODEL", "")
        if not self.command:
            self.command = os.environ.get("TASKLOOP_COMMAND") or DEFAULT_COMMAND
        if not 0.0 <= self.coverage_threshold <= 1.0:
            raise ValueError(
                f"coverage_threshold must be a fraction in [0, 1], got {self.coverage_threshold}"
            )
        if self.max_attempts < 1:
            self.max_attempts = 1


def resolve_repo_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
