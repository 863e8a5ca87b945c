"""Precondition and structural errors raised by workflow operations."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for errors surfaced verbatim to the CLI user."""


class WorkflowNotFoundError(WorkflowError):
    def __init__(self) -> None:
        super().__init__("No active workflow. Run `flowpilot init` first.")


class WorkflowAlreadyRunningError(WorkflowError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Workflow already running: {name}. Use --force to replace it.")
        self.name = name


class TaskNotFoundError(WorkflowError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found.")
        self.task_id = task_id


class InvalidTaskStateError(WorkflowError):
    """Task exists but is not in the status the operation requires."""

    def __init__(self, task_id: str, status: str, expected: str) -> None:
        super().__init__(
            f"Task {task_id} is {status}; only {expected} tasks can be {_verb(expected)}.",
        )
        self.task_id = task_id
        self.status = status
        self.expected = expected


class ActiveTasksError(WorkflowError):
    def __init__(self, task_ids: list[str]) -> None:
        super().__init__(
            f"{len(task_ids)} tasks still active ({','.join(task_ids)}). "
            "Check `flowpilot status` and checkpoint them, or run `flowpilot resume` to reset.",
        )
        self.task_ids = task_ids


class EmptyCheckpointError(WorkflowError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Checkpoint content for task {task_id} must not be empty.")
        self.task_id = task_id


class TasksIncompleteError(WorkflowError):
    def __init__(self) -> None:
        super().__init__("Some tasks are not finished yet. Complete all tasks first.")


class CyclicDependencyError(WorkflowError):
    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Cyclic dependency: {' -> '.join(cycle)}")
        self.cycle = cycle


class LockError(WorkflowError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Could not acquire workflow lock: {path}")
        self.path = path


def _verb(expected: str) -> str:
    return {"active": "checkpointed", "done": "rolled back"}.get(expected, "changed")
