"""Dependency resolution over the task table: ordering, readiness, cycles.

Nothing here caches. ``ready_tasks`` is recomputed on each call because every
``done`` transition changes eligibility.
"""

from __future__ import annotations

from enum import Enum

from taskloop import log
from taskloop.errors import CycleDetectedError, MissingDependencyError
from taskloop.tasks.model import Status, TaskTable, number_key


class _Color(Enum):
    WHITE = 0
    GREY = 1
    BLACK = 2


def topological_order(table: TaskTable) -> list[str]:
    """Return task numbers with every dependency before its dependents.

    Depth-first search with white/grey/black colouring. Roots and dependency
    lists are visited in number order, so the result is deterministic.
    Raises :class:`CycleDetectedError` on a back edge and
    :class:`MissingDependencyError` on an unknown reference.
    """
    deps: dict[str, list[str]] = {t.number: t.dependencies for t in table.tasks}
    color: dict[str, _Color] = {n: _Color.WHITE for n in deps}
    order: list[str] = []

    for root in sorted(deps, key=number_key):
        if color[root] is not _Color.WHITE:
            continue
        # Iterative DFS; each frame is (node, remaining deps). The grey nodes on
        # the stack are exactly the current recursion path.
        stack: list[tuple[str, list[str]]] = [(root, sorted(deps[root], key=number_key))]
        color[root] = _Color.GREY
        while stack:
            node, pending = stack[-1]
            if not pending:
                stack.pop()
                color[node] = _Color.BLACK
                order.append(node)
                continue
            dep = pending.pop(0)
            if dep not in color:
                raise MissingDependencyError(node, dep)
            if color[dep] is _Color.GREY:
                path = [frame[0] for frame in stack]
                cycle = path[path.index(dep):] + [dep]
                raise CycleDetectedError(cycle)
            if color[dep] is _Color.WHITE:
                color[dep] = _Color.GREY
                stack.append((dep, sorted(deps[dep], key=number_key)))

    log.debug(f"Topological order: {' '.join(order)}")
    return order


def deps_satisfied(table: TaskTable, number: str) -> bool:
    return not unmet_dependencies(table, number)


def unmet_dependencies(table: TaskTable, number: str) -> list[str]:
    """Dependencies of *number* that are not ``done`` (unknown ones included), sorted."""
    task = table.get(number)
    if task is None:
        return []
    unmet: list[str] = []
    for dep in task.dependencies:
        other = table.get(dep)
        if other is None or other.status is not Status.DONE:
            unmet.append(dep)
    return sorted(unmet, key=number_key)


def ready_tasks(table: TaskTable) -> set[str]:
    """Pending tasks whose every dependency is done."""
    return {
        t.number
        for t in table.tasks
        if t.status is Status.PENDING and deps_satisfied(table, t.number)
    }


def select_next(ready: set[str] | list[str]) -> str | None:
    """Tie-break among ready tasks: smallest (major, minor)."""
    if not ready:
        return None
    return min(ready, key=number_key)


def explain_block(table: TaskTable, number: str) -> str:
    """Human-readable explanation of why *number* cannot start."""
    parts: list[str] = []
    for dep in unmet_dependencies(table, number):
        other = table.get(dep)
        state = other.phase.value if other else "missing"
        parts.append(f"{dep} ({state})")
    if not parts:
        return ""
    return f"waiting for: {' '.join(parts)}"
