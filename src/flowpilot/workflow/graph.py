"""Pure dependency-graph algorithms over workflow tasks."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from flowpilot.workflow.errors import CyclicDependencyError
from flowpilot.workflow.models import TERMINAL_STATUSES, Task, TaskStatus

CASCADE_SKIP_SUMMARY = "Skipped: a dependency failed"


def build_index(tasks: Iterable[Task]) -> dict[str, Task]:
    return {task.id: task for task in tasks}


def detect_cycles(tasks: Sequence[Task]) -> list[str] | None:
    """Return the first dependency cycle found, as ids from the repeated node back to it.

    Only edges between tasks in ``tasks`` are followed; dependencies on tasks
    outside the given set are dead ends.
    """

    index = build_index(tasks)
    visited: set[str] = set()
    on_stack: set[str] = set()
    parent: dict[str, str] = {}

    for root in tasks:
        if root.id in visited:
            continue
        visited.add(root.id)
        on_stack.add(root.id)
        stack = [(root.id, iter(root.deps))]
        while stack:
            task_id, deps = stack[-1]
            dep = next(deps, None)
            if dep is None:
                stack.pop()
                on_stack.discard(task_id)
            elif dep not in visited:
                parent[dep] = task_id
                visited.add(dep)
                on_stack.add(dep)
                task = index.get(dep)
                stack.append((dep, iter(task.deps if task is not None else ())))
            elif dep in on_stack:
                return _cycle_path(dep, task_id, parent)
    return None


def _cycle_path(start: str, last: str, parent: dict[str, str]) -> list[str]:
    path = [start]
    cursor = last
    while cursor != start:
        path.append(cursor)
        cursor = parent[cursor]
    path.append(start)
    path.reverse()
    return path


def cascade_skip(tasks: Sequence[Task]) -> tuple[Task, ...]:
    """Skip every pending task that (transitively) depends on a failed or skipped task.

    Iterates until a full pass changes nothing. The input is left untouched.
    """

    result = list(tasks)
    changed = True
    while changed:
        changed = False
        index = build_index(result)
        for position, task in enumerate(result):
            if task.status is not TaskStatus.PENDING:
                continue
            blocked = any(
                dep in index and index[dep].status in (TaskStatus.FAILED, TaskStatus.SKIPPED)
                for dep in task.deps
            )
            if blocked:
                result[position] = task.with_status(
                    TaskStatus.SKIPPED,
                    summary=CASCADE_SKIP_SUMMARY,
                )
                changed = True
    return tuple(result)


def find_next_task(tasks: Sequence[Task]) -> Task | None:
    """Return the first pending task whose dependencies are all done.

    Callers apply :func:`cascade_skip` first. Raises
    :class:`CyclicDependencyError` if pending tasks form a cycle.
    """

    ready = _ready_tasks(tasks)
    return ready[0] if ready else None


def find_parallel_tasks(tasks: Sequence[Task]) -> list[Task]:
    """Return every pending task whose dependencies are all done, in stored order."""

    return _ready_tasks(tasks)


def is_all_done(tasks: Iterable[Task]) -> bool:
    return all(task.status in TERMINAL_STATUSES for task in tasks)


def _ready_tasks(tasks: Sequence[Task]) -> list[Task]:
    _raise_on_cycle(tasks)
    index = build_index(tasks)
    return [
        task
        for task in tasks
        if task.status is TaskStatus.PENDING
        and all(dep in index and index[dep].status is TaskStatus.DONE for dep in task.deps)
    ]


def _raise_on_cycle(tasks: Sequence[Task]) -> None:
    pending = [task for task in tasks if task.status is TaskStatus.PENDING]
    cycle = detect_cycles(pending)
    if cycle is not None:
        raise CyclicDependencyError(cycle)
