"""Controllers for workflow CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from flowpilot.config import Settings
from flowpilot.workflow.formatter import format_batch, format_status, format_task
from flowpilot.workflow.graph import is_all_done
from flowpilot.workflow.hooks import LifecycleHookRunner
from flowpilot.workflow.models import TaskType
from flowpilot.workflow.repository import FsWorkflowRepository
from flowpilot.workflow.services import WorkflowService

ALL_TASKS_DONE = "All tasks done"


@dataclass(slots=True)
class InitCommand:
    """CLI input for workflow init."""

    project_root: Path | None
    tasks_markdown: str
    force: bool = False


@dataclass(slots=True)
class NextCommand:
    project_root: Path | None
    batch: bool = False


@dataclass(slots=True)
class CheckpointCommand:
    """CLI input for checkpoint: detail comes from text, a file, or piped stdin."""

    project_root: Path | None
    task_id: str
    text: tuple[str, ...] = ()
    detail_file: Path | None = None
    stdin_text: str = ""
    files: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskIdCommand:
    """CLI input for commands addressing one task (skip, rollback)."""

    project_root: Path | None
    task_id: str


@dataclass(slots=True)
class AddCommand:
    project_root: Path | None
    title: str
    task_type: str = TaskType.GENERAL.value


@dataclass(slots=True)
class WorkflowCommand:
    """CLI input for commands without arguments."""

    project_root: Path | None


class WorkflowCliController:
    """Maps CLI commands onto the workflow service and renders output lines."""

    def init(self, command: InitCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            if not command.tasks_markdown.strip():
                return service.setup().split("\n")
            progress = service.init(command.tasks_markdown, force=command.force)
            suggestions = service.history_suggestions()
        return [
            f"Workflow initialised: {progress.name} ({len(progress.tasks)} tasks)",
            *suggestions,
        ]

    def next(self, command: NextCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            if command.batch:
                assignments = service.next_batch()
                if assignments:
                    return format_batch(assignments)
            else:
                assignment = service.next()
                if assignment is not None:
                    return format_task(assignment.task, assignment.context)
            progress = service.status()

        if progress is None or is_all_done(progress.tasks):
            return [ALL_TASKS_DONE]
        return ["No runnable task: the remaining tasks wait on dependencies that cannot complete."]

    def checkpoint(self, command: CheckpointCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        detail = _checkpoint_detail(command, settings.project_root)
        with _service(settings) as service:
            message = service.checkpoint(
                command.task_id,
                detail.strip(),
                list(command.files) or None,
            )
        return message.split("\n")

    def skip(self, command: TaskIdCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.skip(command.task_id).split("\n")

    def rollback(self, command: TaskIdCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.rollback(command.task_id).split("\n")

    def add(self, command: AddCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.add(command.title, TaskType.parse(command.task_type)).split("\n")

    def status(self, command: WorkflowCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            progress = service.status()
        if progress is None:
            return ["No active workflow."]
        return format_status(progress)

    def review(self, command: WorkflowCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.review().split("\n")

    def finish(self, command: WorkflowCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.finish().split("\n")

    def resume(self, command: WorkflowCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.resume().split("\n")

    def abort(self, command: WorkflowCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.abort().split("\n")

    def setup(self, command: WorkflowCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        with _service(settings) as service:
            return service.setup().split("\n")


def _checkpoint_detail(command: CheckpointCommand, project_root: Path) -> str:
    if command.detail_file is not None:
        root = project_root.resolve()
        path = (root / command.detail_file).resolve()
        if not path.is_relative_to(root):
            raise ValueError(f"--detail-file must stay inside the project: {command.detail_file}")
        try:
            return path.read_text("utf-8")
        except OSError as error:
            raise ValueError(f"Cannot read --detail-file {command.detail_file}: {error}") from error
    if command.text:
        return " ".join(command.text)
    return command.stdin_text


@contextmanager
def _service(settings: Settings) -> Iterator[WorkflowService]:
    repository = FsWorkflowRepository(
        settings.project_root,
        protocol_file=settings.protocol_file,
        poll_interval_ms=settings.lock.poll_interval_ms,
        verify_timeout_seconds=settings.verify.timeout_seconds,
    )
    hooks = LifecycleHookRunner(
        settings.project_root,
        repository.load_config().hooks,
        timeout_seconds=settings.hooks.timeout_seconds,
    )
    yield WorkflowService(
        repository=repository,
        hooks=hooks,
        lock_max_wait_ms=settings.lock.max_wait_ms,
    )
