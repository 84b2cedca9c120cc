"""Plan documents: the ordered list of planned work items the task store is built from.

The core only needs :class:`DocumentSource`. :class:`MarkdownPlanSource` reads
a markdown plan where each task is a heading::

    ## Task 1.2: Add login endpoint
    Free-form description lines.
    - Dependencies: 1.1
    - Estimated hours: 3
    - Complexity: medium

A checklist line (``- [ ] 1.3 Write docs``) is accepted as a task with no
metadata.
"""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from taskloop.errors import DuplicateTaskNumberError, ParseError, StoreIOError
from taskloop.io_utils import read_text
from taskloop.tasks.io import parse_dependencies
from taskloop.tasks.model import NUMBER_RE, Complexity, Task


@dataclass
class PlanItem:
    number: str
    title: str
    description: str = ""
    dependencies: list[str] = field(default_factory=list)
    estimated_hours: float | None = None
    complexity: Complexity = Complexity.MEDIUM

    def to_task(self) -> Task:
        return Task(
            number=self.number,
            title=self.title,
            dependencies=list(self.dependencies),
            estimated_hours=self.estimated_hours,
            complexity=self.complexity,
        )


class DocumentSource(ABC):
    """Supplies the ordered list of planned work items."""

    @abstractmethod
    def items(self) -> list[PlanItem]:
        ...


class StaticPlanSource(DocumentSource):
    """In-memory plan, mostly for callers that build items programmatically."""

    def __init__(self, items: list[PlanItem]) -> None:
        self._items = list(items)

    def items(self) -> list[PlanItem]:
        return list(self._items)


_HEADING_RE = re.compile(
    r"^#{2,4}\s+Task\s+(?P<number>\d\S*?)\s*[:\-]\s*(?P<title>.+?)\s*$", re.IGNORECASE
)
_CHECKLIST_RE = re.compile(
    r"^\s*[-*]\s+\[[ xX]\]\s+(?:Task\s+)?(?P<number>\d+\.\d+)\s*:?\s+(?P<title>.+?)\s*$"
)
_META_RE = re.compile(
    r"^\s*(?:[-*]\s+)?(?:\*\*)?(?P<key>dependencies|depends on|estimated hours|complexity)"
    r"(?:\*\*)?\s*:\s*(?:\*\*)?\s*(?P<value>.*?)\s*$",
    re.IGNORECASE,
)
_NONE_VALUES = {"", "none", "-", "n/a"}


def parse_plan(text: str) -> list[PlanItem]:
    """Parse markdown plan *text* into items, in document order."""
    items: list[PlanItem] = []
    seen: set[str] = set()
    current: PlanItem | None = None
    description: list[str] = []

    def flush() -> None:
        if current is not None:
            current.description = "\n".join(description).strip()

    for lineno, line in enumerate(text.splitlines(), start=1):
        heading = _HEADING_RE.match(line) or _CHECKLIST_RE.match(line)
        if heading:
            flush()
            number = heading.group("number")
            if not NUMBER_RE.match(number):
                raise ParseError(f"invalid task number '{number}' in plan", line=lineno)
            if number in seen:
                raise DuplicateTaskNumberError(number)
            seen.add(number)
            current = PlanItem(number=number, title=heading.group("title"))
            description = []
            items.append(current)
            continue

        if line.startswith("#"):
            # Any other heading ends the current task section.
            flush()
            current = None
            description = []
            continue

        if current is None:
            continue

        meta = _META_RE.match(line)
        if meta:
            _apply_meta(current, meta.group("key").lower(), meta.group("value"), lineno)
        else:
            description.append(line)

    flush()
    return items


def _apply_meta(item: PlanItem, key: str, value: str, lineno: int) -> None:
    value = value.strip().rstrip(".")
    if key in ("dependencies", "depends on"):
        if value.lower() in _NONE_VALUES:
            item.dependencies = []
            return
        item.dependencies = [d.removeprefix("Task ").strip() for d in parse_dependencies(value)]
        for dep in item.dependencies:
            if not NUMBER_RE.match(dep):
                raise ParseError(
                    f"task {item.number}: invalid dependency '{dep}' in plan", line=lineno
                )
    elif key == "estimated hours":
        if value.lower() in _NONE_VALUES:
            return
        try:
            hours = float(value.split()[0])
        except ValueError:
            hours = math.nan
        if not math.isfinite(hours) or hours < 0:
            raise ParseError(
                f"task {item.number}: estimated hours '{value}' is not a valid number of hours", line=lineno
            )
        item.estimated_hours = hours
    elif key == "complexity":
        try:
            item.complexity = Complexity(value.lower())
        except ValueError:
            raise ParseError(
                f"task {item.number}: invalid complexity '{value}'", line=lineno
            ) from None


class MarkdownPlanSource(DocumentSource):
    def __init__(self, path: Path) -> None:
        self.path = path

    def items(self) -> list[PlanItem]:
        try:
            text = read_text(self.path)
        except OSError as e:
            raise StoreIOError(f"Cannot read plan {self.path}: {e}") from e
        return parse_plan(text)


def find_plan_file() -> Path | None:
    """Search common locations for a plan file and return the first match."""
    for name in ["TASKS.md", "tasks.md", "PLAN.md", "plan.md"]:
        p = Path(name)
        if p.is_file():
            return p
    for p in sorted(Path("docs").glob("*tasks*.md")):
        if p.is_file():
            return p
    return None
