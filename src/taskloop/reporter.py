"""Session summary, JSON session reports and the single "next task" directive."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from taskloop import log
from taskloop.config import DEFAULT_COMMAND
from taskloop.io_utils import write_text
from taskloop.loop import Advanced, AllComplete, Blocked, Fatal, SessionOutcome, SessionReport
from taskloop.resolver import unmet_dependencies
from taskloop.tasks.model import Status, TaskTable

DIRECTIVE_PREFIX = "Next task:"


def next_directive(table: TaskTable, command: str = DEFAULT_COMMAND) -> str:
    """The one line telling the caller what to do next.

    Pure: computed from *table* only. The in-flight task wins (it is what the
    loop will drive next); otherwise the lowest-numbered task whose
    dependencies are done.
    """
    prefix = f"{DIRECTIVE_PREFIX} {command}"

    current = table.in_flight()
    if current is not None:
        if current.blocked_reason:
            return f"{prefix} Fix blocker in Task {current.number} before continuing"
        return f"{prefix} Start with Task {current.number}: {current.title}"

    if table.all_done():
        return f"{prefix} All tasks complete - Ready for PR submission"

    remaining = [t for t in table.sorted_tasks() if t.status is not Status.DONE]
    for t in remaining:
        if not unmet_dependencies(table, t.number):
            return f"{prefix} Start with Task {t.number}: {t.title}"

    first = remaining[0]
    waiting = ", ".join(unmet_dependencies(table, first.number))
    return f"{prefix} Task {first.number} blocked - waiting for: {waiting}"


def describe_outcome(outcome: SessionOutcome) -> str:
    match outcome:
        case Advanced(task=task, phase=phase):
            return f"Task {task} -> {phase.value}"
        case Blocked(task=task, reason=reason):
            return f"Task {task} blocked: {reason}"
        case AllComplete():
            return "All tasks complete"
        case Fatal(error=error):
            return f"Fatal: {error}"
    return repr(outcome)


def summary_lines(table: TaskTable, report: SessionReport | None = None) -> list[str]:
    """Plain-text progress summary (without the directive)."""
    total = len(table.tasks)
    done = table.count(Status.DONE)
    lines = [
        f"Progress: {done}/{total} task(s) done, "
        f"{table.count(Status.IN_PROGRESS)} in progress, "
        f"{table.count(Status.PENDING)} pending",
    ]
    current = table.in_flight()
    if current is not None:
        lines.append(f"In progress: Task {current.number} ({current.phase.value})")
        if current.blocked_reason:
            lines.append(f"Blocker: {current.blocked_reason}")
    if report is not None and report.outcomes:
        lines.append("This session:")
        lines.extend(f"  - {describe_outcome(o)}" for o in report.outcomes)
        if report.completed_tasks:
            lines.append(f"Completed: {', '.join(report.completed_tasks)}")
    return lines


def render_summary(
    table: TaskTable,
    report: SessionReport | None = None,
    *,
    command: str = DEFAULT_COMMAND,
) -> str:
    """Plain-text summary with the directive as the final line."""
    return "\n".join([*summary_lines(table, report), next_directive(table, command)])


def show_summary(
    table: TaskTable,
    report: SessionReport | None = None,
    *,
    command: str = DEFAULT_COMMAND,
    total_input_tokens: int = 0,
    total_output_tokens: int = 0,
) -> str:
    """Print the summary followed by the directive as the very last line. Returns the directive."""
    log.console.print("")
    log.console.print("[bold]============================================[/bold]")
    for line in summary_lines(table, report):
        log.console.print(line, markup=False)
    if total_input_tokens or total_output_tokens:
        log.console.print(
            f"Tokens: {total_input_tokens} in / {total_output_tokens} out", markup=False
        )
    log.console.print("[bold]============================================[/bold]")
    directive = next_directive(table, command)
    log.console.print(directive, markup=False, soft_wrap=True)
    return directive


def write_session_report(
    artifacts_dir: Path,
    table: TaskTable,
    report: SessionReport,
    *,
    command: str = DEFAULT_COMMAND,
) -> Path:
    """Write ``<artifacts_dir>/sessions/<timestamp>.json`` and return its path."""
    now = datetime.now(timezone.utc)
    sessions = artifacts_dir / "sessions"
    sessions.mkdir(parents=True, exist_ok=True)
    path = sessions / f"session-{now.strftime('%Y%m%d-%H%M%S-%f')}.json"

    payload = {
        "timestamp": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "stopReason": report.stop_reason,
        "outcomes": [describe_outcome(o) for o in report.outcomes],
        "completedTasks": report.completed_tasks,
        "tasks": {t.number: t.phase.value for t in table.tasks},
        "directive": next_directive(table, command),
    }
    write_text(path, json.dumps(payload, indent=2))
    log.debug(f"Session report: {path}")
    return path
