"""Pure lifecycle transitions producing new workflow snapshots."""

from __future__ import annotations

from collections.abc import Callable, Collection

from flowpilot.workflow.errors import TaskNotFoundError
from flowpilot.workflow.models import (
    MAX_TASK_ATTEMPTS,
    FailOutcome,
    FailResult,
    ResumeResult,
    Task,
    TaskStatus,
    TaskType,
    WorkflowProgress,
    WorkflowStatus,
    make_task_id,
)

MANUAL_SKIP_SUMMARY = "Skipped manually"


def complete_task(progress: WorkflowProgress, task_id: str, summary: str) -> WorkflowProgress:
    """Mark a task done with its summary and clear ``current``."""

    _require_task(progress, task_id)
    return progress.evolve(
        current=None,
        tasks=_map_task(
            progress,
            task_id,
            lambda task: task.with_status(TaskStatus.DONE, summary=summary),
        ),
    )


def fail_task(progress: WorkflowProgress, task_id: str) -> FailResult:
    """Record one failed attempt: back to pending, or failed once the budget is spent."""

    task = _require_task(progress, task_id)
    retries = task.retries + 1
    if retries >= MAX_TASK_ATTEMPTS:
        outcome, status = FailOutcome.SKIP, TaskStatus.FAILED
    else:
        outcome, status = FailOutcome.RETRY, TaskStatus.PENDING
    return FailResult(
        outcome=outcome,
        progress=progress.evolve(
            current=None,
            tasks=_map_task(
                progress,
                task_id,
                lambda current: current.with_status(status, retries=retries),
            ),
        ),
    )


def resume_progress(progress: WorkflowProgress) -> ResumeResult:
    """Reset tasks left active by an interrupted run.

    Without active tasks the aggregate is returned as-is, reporting
    ``current`` as the reset id only while the workflow is running. With
    active tasks all of them go back to pending, but only the first one's id
    is reported.
    """

    active = progress.tasks_with_status(TaskStatus.ACTIVE)
    if not active:
        reset_id = progress.current if progress.status is WorkflowStatus.RUNNING else None
        return ResumeResult(progress=progress, reset_id=reset_id)

    tasks = tuple(
        task.with_status(TaskStatus.PENDING) if task.status is TaskStatus.ACTIVE else task
        for task in progress.tasks
    )
    return ResumeResult(
        progress=progress.evolve(current=None, status=WorkflowStatus.RUNNING, tasks=tasks),
        reset_id=active[0].id,
    )


def activate_tasks(progress: WorkflowProgress, task_ids: Collection[str]) -> WorkflowProgress:
    """Mark the given tasks active; ``current`` points at the first of them in stored order."""

    tasks = tuple(
        task.with_status(TaskStatus.ACTIVE) if task.id in task_ids else task
        for task in progress.tasks
    )
    first = next((task.id for task in tasks if task.id in task_ids), None)
    return progress.evolve(current=first, tasks=tasks)


def skip_task(progress: WorkflowProgress, task_id: str) -> WorkflowProgress:
    _require_task(progress, task_id)
    return progress.evolve(
        current=None,
        tasks=_map_task(
            progress,
            task_id,
            lambda task: task.with_status(TaskStatus.SKIPPED, summary=MANUAL_SKIP_SUMMARY),
        ),
    )


def append_task(
    progress: WorkflowProgress,
    title: str,
    task_type: TaskType = TaskType.GENERAL,
) -> tuple[WorkflowProgress, Task]:
    """Append a pending task numbered one past the highest existing id."""

    highest = max((task.number for task in progress.tasks), default=0)
    task = Task(id=make_task_id(highest + 1), title=title, type=task_type)
    return progress.evolve(tasks=(*progress.tasks, task)), task


def rollback_tasks(progress: WorkflowProgress, task_id: str) -> tuple[WorkflowProgress, int]:
    """Reset the task and every later-numbered done task to pending.

    Returns the new aggregate and how many tasks were reset.
    """

    threshold = _require_task(progress, task_id).number
    reset = 0
    tasks: list[Task] = []
    for task in progress.tasks:
        if task.status is TaskStatus.DONE and task.number >= threshold:
            tasks.append(task.with_status(TaskStatus.PENDING, summary=""))
            reset += 1
        else:
            tasks.append(task)
    return progress.evolve(current=None, tasks=tuple(tasks)), reset


def _require_task(progress: WorkflowProgress, task_id: str) -> Task:
    task = progress.find(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    return task


def _map_task(
    progress: WorkflowProgress,
    task_id: str,
    change: Callable[[Task], Task],
) -> tuple[Task, ...]:
    return tuple(change(task) if task.id == task_id else task for task in progress.tasks)
