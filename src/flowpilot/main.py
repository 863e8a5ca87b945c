"""CLI entrypoint for flowpilot."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from flowpilot import __version__
from flowpilot.config import Settings
from flowpilot.workflow.controllers import (
    AddCommand,
    CheckpointCommand,
    InitCommand,
    NextCommand,
    TaskIdCommand,
    WorkflowCliController,
    WorkflowCommand,
)
from flowpilot.workflow.errors import WorkflowError
from flowpilot.workflow.models import TaskType

click.rich_click.USE_MARKDOWN = True
WORKFLOW_CONTROLLER = WorkflowCliController()

CommandT = TypeVar("CommandT")

project_root_option = click.option(
    "--project-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project directory (defaults to FLOWPILOT_PROJECT_ROOT or the current directory).",
)


@click.group()
@click.version_option(version=__version__, prog_name="flowpilot")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log orchestration decisions.")
def flowpilot(verbose: bool) -> None:
    """Drive an agent through a dependency-ordered task list.

    Typical loop: `init` → `next --batch` → `checkpoint` … → `review` → `finish`.
    """

    try:
        settings = Settings.from_env(verbose=True if verbose else None)
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _configure_logging(settings.verbose)


@flowpilot.command("init")
@project_root_option
@click.option("--force", is_flag=True, default=False, help="Replace a running workflow.")
def init(project_root: Path | None, force: bool) -> None:
    """Start a workflow from a task list piped on stdin.

    Without piped input the project is only set up (same as `setup`).
    """

    _run(
        WORKFLOW_CONTROLLER.init,
        InitCommand(project_root=project_root, tasks_markdown=_read_stdin(), force=force),
    )


@flowpilot.command("next")
@project_root_option
@click.option("--batch", is_flag=True, default=False, help="Activate every parallel-ready task.")
def next_task(project_root: Path | None, batch: bool) -> None:
    """Activate the next runnable task and print its card."""

    _run(WORKFLOW_CONTROLLER.next, NextCommand(project_root=project_root, batch=batch))


@flowpilot.command("checkpoint")
@project_root_option
@click.argument("task_id")
@click.argument("text", nargs=-1)
@click.option(
    "--files",
    "files",
    multiple=True,
    help="Changed file to commit. Can be repeated; defaults to all changes.",
)
@click.option(
    "--detail-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Read checkpoint detail from a file inside the project.",
)
def checkpoint(
    project_root: Path | None,
    task_id: str,
    text: tuple[str, ...],
    files: tuple[str, ...],
    detail_file: Path | None,
) -> None:
    """Record a task result.

    Detail comes from TEXT, `--detail-file`, or stdin. A first line of
    `FAILED` records a failed attempt; following lines give the reason.
    """

    _run(
        WORKFLOW_CONTROLLER.checkpoint,
        CheckpointCommand(
            project_root=project_root,
            task_id=task_id,
            text=text,
            detail_file=detail_file,
            stdin_text="" if text or detail_file else _read_stdin(),
            files=files,
        ),
    )


@flowpilot.command("skip")
@project_root_option
@click.argument("task_id")
def skip(project_root: Path | None, task_id: str) -> None:
    """Skip a task manually."""

    _run(WORKFLOW_CONTROLLER.skip, TaskIdCommand(project_root=project_root, task_id=task_id))


@flowpilot.command("rollback")
@project_root_option
@click.argument("task_id")
def rollback(project_root: Path | None, task_id: str) -> None:
    """Revert commits made after a done task and reset it and later tasks to pending."""

    _run(WORKFLOW_CONTROLLER.rollback, TaskIdCommand(project_root=project_root, task_id=task_id))


@flowpilot.command("add")
@project_root_option
@click.argument("title", nargs=-1, required=True)
@click.option(
    "--type",
    "task_type",
    type=click.Choice([member.value for member in TaskType]),
    default=TaskType.GENERAL.value,
    show_default=True,
    help="Task category.",
)
def add(project_root: Path | None, title: tuple[str, ...], task_type: str) -> None:
    """Append a pending task."""

    _run(
        WORKFLOW_CONTROLLER.add,
        AddCommand(project_root=project_root, title=" ".join(title), task_type=task_type),
    )


@flowpilot.command("status")
@project_root_option
def status(project_root: Path | None) -> None:
    """Show workflow progress."""

    _run(WORKFLOW_CONTROLLER.status, WorkflowCommand(project_root=project_root))


@flowpilot.command("review")
@project_root_option
def review(project_root: Path | None) -> None:
    """Mark code review as passed; required before `finish`."""

    _run(WORKFLOW_CONTROLLER.review, WorkflowCommand(project_root=project_root))


@flowpilot.command("finish")
@project_root_option
def finish(project_root: Path | None) -> None:
    """Verify, commit and return the workflow to idle (after `review`)."""

    _run(WORKFLOW_CONTROLLER.finish, WorkflowCommand(project_root=project_root))


@flowpilot.command("resume")
@project_root_option
def resume(project_root: Path | None) -> None:
    """Recover after an interruption: reset tasks left active."""

    _run(WORKFLOW_CONTROLLER.resume, WorkflowCommand(project_root=project_root))


@flowpilot.command("abort")
@project_root_option
def abort(project_root: Path | None) -> None:
    """Abort the workflow and remove `.workflow/`."""

    _run(WORKFLOW_CONTROLLER.abort, WorkflowCommand(project_root=project_root))


@flowpilot.command("setup")
@project_root_option
def setup(project_root: Path | None) -> None:
    """Install the workflow protocol and agent hooks into the project."""

    _run(WORKFLOW_CONTROLLER.setup, WorkflowCommand(project_root=project_root))


def _run(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except (WorkflowError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _read_stdin() -> str:
    if sys.stdin is None or sys.stdin.isatty():
        return ""
    return sys.stdin.read()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(levelname)s] %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    flowpilot()
