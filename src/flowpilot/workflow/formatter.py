"""Plain-text rendering of workflow status and task cards."""

from __future__ import annotations

from collections.abc import Sequence

from flowpilot.workflow.models import Task, TaskAssignment, TaskStatus, WorkflowProgress

STATUS_ICONS = {
    TaskStatus.PENDING: "[ ]",
    TaskStatus.ACTIVE: "[>]",
    TaskStatus.DONE: "[x]",
    TaskStatus.SKIPPED: "[-]",
    TaskStatus.FAILED: "[!]",
}


def format_status(progress: WorkflowProgress) -> list[str]:
    lines = [
        f"=== {progress.name} ===",
        f"Status: {progress.status.value} | Progress: "
        f"{progress.count(TaskStatus.DONE)}/{len(progress.tasks)}",
        "",
    ]
    for task in progress.tasks:
        suffix = f" - {task.summary}" if task.summary else ""
        retries = f" (retries: {task.retries})" if task.retries else ""
        icon = STATUS_ICONS[task.status]
        lines.append(f"{icon} {task.id} [{task.type.value}] {task.title}{retries}{suffix}")
    return lines


def format_task(task: Task, context: str) -> list[str]:
    """Task card for a sub-agent, including the checkpoint commands it must run."""

    lines = [
        f"--- Task {task.id} ---",
        f"Title: {task.title}",
        f"Type: {task.type.value}",
        f"Deps: {', '.join(task.deps) if task.deps else 'none'}",
    ]
    if task.description:
        lines.append(f"Description: {task.description}")
    lines.extend(
        [
            "",
            "--- Checkpoint commands (include these in the sub-agent prompt) ---",
            f"On success: echo 'one-line summary' | flowpilot checkpoint {task.id} "
            "--files <changed-file-1> --files <changed-file-2>",
            f"On failure: printf 'FAILED\\n<reason>' | flowpilot checkpoint {task.id}",
        ],
    )
    if context:
        lines.extend(["", "--- Context ---", context])
    return lines


def format_batch(assignments: Sequence[TaskAssignment]) -> list[str]:
    lines = [f"=== Parallel batch ({len(assignments)} tasks) ===", ""]
    for assignment in assignments:
        lines.extend(format_task(assignment.task, assignment.context))
        lines.append("")
    return lines
