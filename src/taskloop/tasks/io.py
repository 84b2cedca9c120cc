"""CSV encoding of the task table.

One row per task. Required columns::

    number, title, status, dependencies, estimated_hours, complexity, notes

An optional ``phase`` column carries the refined phase of an in-flight task so
an interrupted session resumes where it stopped. Without it the phase is
derived from ``status``.
"""

from __future__ import annotations

import csv
import io
import math
from pathlib import Path

from taskloop.errors import ParseError, StoreIOError
from taskloop.io_utils import atomic_write_text, read_text
from taskloop.tasks.model import NUMBER_RE, Complexity, Phase, Status, Task, TaskTable

REQUIRED_COLUMNS: tuple[str, ...] = (
    "number",
    "title",
    "status",
    "dependencies",
    "estimated_hours",
    "complexity",
    "notes",
)
COLUMNS: tuple[str, ...] = REQUIRED_COLUMNS + ("phase",)

_STATUS_VALUES = ", ".join(s.value for s in Status)
_PHASE_VALUES = ", ".join(p.value for p in Phase)
_COMPLEXITY_VALUES = ", ".join(c.value for c in Complexity)


def parse_dependencies(raw: str) -> list[str]:
    return [d.strip() for d in raw.split(",") if d.strip()]


def _parse_row(row: dict[str, str | None], line: int) -> Task:
    def cell(name: str, *, strip: bool = True) -> str:
        value = row.get(name)
        if value is None:
            raise ParseError(f"missing value for column '{name}'", line=line)
        return value.strip() if strip else value

    number = cell("number")
    if not NUMBER_RE.match(number):
        raise ParseError(f"invalid task number '{number}' (expected major.minor)", line=line)

    # Free text is kept exactly as stored.
    title = cell("title", strip=False)
    if not title.strip():
        raise ParseError(f"task {number} is missing a title", line=line)

    raw_status = cell("status")
    try:
        status = Status(raw_status)
    except ValueError:
        raise ParseError(
            f"task {number}: invalid status '{raw_status}' (expected one of: {_STATUS_VALUES})",
            line=line,
        ) from None

    raw_phase = (row.get("phase") or "").strip()
    if raw_phase:
        try:
            phase = Phase(raw_phase)
        except ValueError:
            raise ParseError(
                f"task {number}: invalid phase '{raw_phase}' (expected one of: {_PHASE_VALUES})",
                line=line,
            ) from None
        if phase.status is not status:
            raise ParseError(
                f"task {number}: phase '{phase.value}' contradicts status '{status.value}'",
                line=line,
            )
    else:
        phase = Phase(status.value)

    dependencies = parse_dependencies(cell("dependencies"))
    for dep in dependencies:
        if not NUMBER_RE.match(dep):
            raise ParseError(f"task {number}: invalid dependency '{dep}'", line=line)
        if dep == number:
            raise ParseError(f"task {number} depends on itself", line=line)

    raw_hours = cell("estimated_hours")
    hours: float | None = None
    if raw_hours:
        try:
            hours = float(raw_hours)
        except ValueError:
            raise ParseError(
                f"task {number}: estimated_hours '{raw_hours}' is not a number", line=line
            ) from None
        if not math.isfinite(hours):
            raise ParseError(f"task {number}: estimated_hours must be a finite number", line=line)
        if hours < 0:
            raise ParseError(f"task {number}: estimated_hours must be >= 0", line=line)

    raw_complexity = cell("complexity")
    try:
        complexity = Complexity(raw_complexity)
    except ValueError:
        raise ParseError(
            f"task {number}: invalid complexity '{raw_complexity}' "
            f"(expected one of: {_COMPLEXITY_VALUES})",
            line=line,
        ) from None

    return Task(
        number=number,
        title=title,
        phase=phase,
        dependencies=dependencies,
        estimated_hours=hours,
        complexity=complexity,
        notes=cell("notes", strip=False),
    )


def parse_task_table(text: str) -> TaskTable:
    """Parse CSV *text* into a :class:`TaskTable`. Raises :class:`ParseError`."""
    reader = csv.DictReader(io.StringIO(text))
    header = reader.fieldnames or []
    missing = [c for c in REQUIRED_COLUMNS if c not in header]
    if missing:
        raise ParseError(f"missing required column(s): {', '.join(missing)}", line=1)

    tasks: list[Task] = []
    try:
        for row in reader:
            if not any((v or "").strip() for k, v in row.items() if k is not None):
                continue
            if None in row:
                raise ParseError("row has more cells than the header", line=reader.line_num)
            tasks.append(_parse_row(row, reader.line_num))
    except csv.Error as e:
        raise ParseError(str(e), line=reader.line_num) from e
    return TaskTable(tasks=tasks)


def _format_hours(hours: float | None) -> str:
    if hours is None:
        return ""
    if float(hours).is_integer():
        return str(int(hours))
    return repr(float(hours))


def dump_task_table(table: TaskTable) -> str:
    """Serialize *table* to CSV text, preserving row order."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(COLUMNS), lineterminator="\n")
    writer.writeheader()
    for t in table.tasks:
        writer.writerow(
            {
                "number": t.number,
                "title": t.title,
                "status": t.status.value,
                "dependencies": ",".join(t.dependencies),
                "estimated_hours": _format_hours(t.estimated_hours),
                "complexity": t.complexity.value,
                "notes": t.notes,
                "phase": t.phase.value,
            }
        )
    return buf.getvalue()


def load_task_table(path: Path) -> TaskTable:
    try:
        text = read_text(path)
    except (OSError, UnicodeDecodeError) as e:
        raise StoreIOError(f"Cannot read task table {path}: {e}") from e
    return parse_task_table(text)


def save_task_table(path: Path, table: TaskTable) -> None:
    try:
        atomic_write_text(path, dump_task_table(table))
    except OSError as e:
        raise StoreIOError(f"Cannot write task table {path}: {e}") from e
