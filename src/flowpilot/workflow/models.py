"""Domain models for the workflow task graph."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class TaskType(str, Enum):
    """Routing category of a task. Not used for scheduling."""

    FRONTEND = "frontend"
    BACKEND = "backend"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: str | None) -> TaskType:
        """Map a raw string onto a task type; unknown values become ``general``."""

        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.GENERAL


class TaskStatus(str, Enum):
    """Per-task lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: str | None) -> TaskStatus:
        """Map a persisted status string; unknown values become ``pending``."""

        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.PENDING


class WorkflowStatus(str, Enum):
    """Workflow-level lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    FINISHING = "finishing"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @classmethod
    def parse(cls, value: str | None) -> WorkflowStatus:
        """Map a persisted status string; unknown values become ``idle``."""

        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.IDLE


TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.SKIPPED, TaskStatus.FAILED})
MAX_TASK_ATTEMPTS = 3
FAILED_SENTINEL = "FAILED"


def make_task_id(n: int) -> str:
    """Return the zero-padded ordinal id for 1-based position ``n``."""

    return str(n).zfill(3)


@dataclass(frozen=True, slots=True)
class Task:
    """One unit of work in the workflow graph."""

    id: str
    title: str
    description: str = ""
    type: TaskType = TaskType.GENERAL
    status: TaskStatus = TaskStatus.PENDING
    deps: tuple[str, ...] = ()
    summary: str = ""
    retries: int = 0

    def with_status(self, status: TaskStatus, **changes: object) -> Task:
        """Return a copy with a new status and optional field changes."""

        return replace(self, status=status, **changes)

    @property
    def number(self) -> int:
        """Numeric value of the ordinal id."""

        return int(self.id)


@dataclass(frozen=True, slots=True)
class WorkflowProgress:
    """Aggregate root: workflow status plus its ordered tasks."""

    name: str
    status: WorkflowStatus = WorkflowStatus.IDLE
    current: str | None = None
    tasks: tuple[Task, ...] = ()

    def evolve(self, **changes: object) -> WorkflowProgress:
        """Return a copy with the given fields replaced."""

        return replace(self, **changes)

    def find(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def count(self, status: TaskStatus) -> int:
        return sum(1 for task in self.tasks if task.status is status)

    def tasks_with_status(self, status: TaskStatus) -> tuple[Task, ...]:
        return tuple(task for task in self.tasks if task.status is status)


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """One task as produced by the task-list parser."""

    title: str
    type: TaskType = TaskType.GENERAL
    deps: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """Parsed task list: workflow name, description and task definitions."""

    name: str
    description: str = ""
    tasks: tuple[TaskDefinition, ...] = ()


class FailOutcome(str, Enum):
    """Result of recording a failed attempt."""

    RETRY = "retry"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class FailResult:
    """New aggregate plus the retry decision."""

    outcome: FailOutcome
    progress: WorkflowProgress


@dataclass(frozen=True, slots=True)
class ResumeResult:
    """New aggregate plus the id reported as reset, if any."""

    progress: WorkflowProgress
    reset_id: str | None


@dataclass(frozen=True, slots=True)
class TaskAssignment:
    """An activated task with the context assembled for its executor."""

    task: Task
    context: str


@dataclass(slots=True)
class VerifyResult:
    """Outcome of running the project's verification commands."""

    passed: bool
    scripts: list[str] = field(default_factory=list)
    error: str | None = None
