"""Use-case service sequencing workflow transitions against the repository."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from flowpilot.workflow.errors import (
    ActiveTasksError,
    EmptyCheckpointError,
    InvalidTaskStateError,
    TaskNotFoundError,
    TasksIncompleteError,
    WorkflowAlreadyRunningError,
    WorkflowNotFoundError,
)
from flowpilot.workflow.graph import cascade_skip, find_next_task, find_parallel_tasks, is_all_done
from flowpilot.workflow.history import analyze_history, collect_stats
from flowpilot.workflow.hooks import LifecycleHook, LifecycleHookRunner
from flowpilot.workflow.models import (
    FAILED_SENTINEL,
    MAX_TASK_ATTEMPTS,
    FailOutcome,
    Task,
    TaskAssignment,
    TaskStatus,
    TaskType,
    WorkflowDefinition,
    WorkflowProgress,
    WorkflowStatus,
    make_task_id,
)
from flowpilot.workflow.parser import parse_tasks_markdown
from flowpilot.workflow.repository import WorkflowRepository
from flowpilot.workflow.summary import (
    build_rolling_summary,
    detect_repeated_failure,
    format_failure_record,
    parse_failure_records,
)
from flowpilot.workflow.transitions import (
    activate_tasks,
    append_task,
    complete_task,
    fail_task,
    resume_progress,
    rollback_tasks,
    skip_task,
)

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"
SUMMARY_LINE_CHARS = 80
MANUAL_COMMIT_HINT = "Fix the error, then run `git add -A && git commit` manually."


class WorkflowService:
    """Runs the workflow operations; every mutating one holds the repository lock."""

    def __init__(
        self,
        *,
        repository: WorkflowRepository,
        parse: Callable[[str], WorkflowDefinition] = parse_tasks_markdown,
        hooks: LifecycleHookRunner | None = None,
        lock_max_wait_ms: int = 5_000,
    ) -> None:
        self.repository = repository
        self.parse = parse
        self.hooks = hooks
        self.lock_max_wait_ms = lock_max_wait_ms

    def init(self, tasks_markdown: str, *, force: bool = False) -> WorkflowProgress:
        with self._locked():
            existing = self.repository.load_progress()
            if existing is not None and existing.status is WorkflowStatus.RUNNING and not force:
                raise WorkflowAlreadyRunningError(existing.name)

            definition = self.parse(tasks_markdown)
            progress = WorkflowProgress(
                name=definition.name,
                status=WorkflowStatus.RUNNING,
                tasks=tuple(
                    Task(
                        id=make_task_id(position),
                        title=item.title,
                        description=item.description,
                        type=item.type,
                        deps=item.deps,
                    )
                    for position, item in enumerate(definition.tasks, start=1)
                ),
            )
            self.repository.clear_context()
            self.repository.save_progress(progress)
            self.repository.save_tasks(tasks_markdown)
            self.repository.save_summary(f"# {definition.name}\n\n{definition.description}\n")
            self.repository.ensure_protocol_file()
            self.repository.ensure_agent_hooks()
        logger.debug("init: %s with %s tasks", progress.name, len(progress.tasks))
        return progress

    def next(self) -> TaskAssignment | None:
        """Activate the first runnable task and return it with its context."""

        with self._locked():
            progress = self._prepare_selection()
            if progress is None:
                return None
            task = find_next_task(progress.tasks)
            if task is None:
                logger.debug("next: no runnable task")
                return None

            logger.debug("next: activating %s (deps: %s)", task.id, ",".join(task.deps) or "none")
            self.repository.save_progress(activate_tasks(progress, {task.id}))
            self._fire(LifecycleHook.TASK_START, {"TASK_ID": task.id, "TASK_TITLE": task.title})
            return TaskAssignment(
                task=task.with_status(TaskStatus.ACTIVE),
                context=self._assemble_context(task, self.repository.load_summary()),
            )

    def next_batch(self) -> list[TaskAssignment]:
        """Activate every task whose dependencies are done, in stored order."""

        with self._locked():
            progress = self._prepare_selection()
            if progress is None:
                return []
            tasks = find_parallel_tasks(progress.tasks)
            if not tasks:
                logger.debug("next_batch: no runnable tasks")
                return []

            logger.debug("next_batch: activating %s", ",".join(task.id for task in tasks))
            self.repository.save_progress(
                activate_tasks(progress, {task.id for task in tasks}),
            )
            for task in tasks:
                self._fire(
                    LifecycleHook.TASK_START,
                    {"TASK_ID": task.id, "TASK_TITLE": task.title},
                )
            summary = self.repository.load_summary()
            return [
                TaskAssignment(
                    task=task.with_status(TaskStatus.ACTIVE),
                    context=self._assemble_context(task, summary),
                )
                for task in tasks
            ]

    def checkpoint(
        self,
        task_id: str,
        detail: str,
        files: Sequence[str] | None = None,
    ) -> str:
        """Record an active task's outcome: success detail or a ``FAILED`` report."""

        with self._locked():
            progress = self._require_progress()
            task = progress.find(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            logger.debug(
                "checkpoint %s: status=%s retries=%s",
                task_id,
                task.status.value,
                task.retries,
            )
            if task.status is not TaskStatus.ACTIVE:
                raise InvalidTaskStateError(task_id, task.status.value, TaskStatus.ACTIVE.value)

            reason = _failure_reason(detail)
            if reason is not None:
                return self._record_failure(progress, task, reason)

            if not detail.strip():
                raise EmptyCheckpointError(task_id)

            summary_line = detail.split("\n")[0][:SUMMARY_LINE_CHARS]
            updated = complete_task(progress, task_id, summary_line)
            logger.debug('checkpoint %s: done, summary="%s"', task_id, summary_line)
            self.repository.save_progress(updated)
            self.repository.save_task_context(
                task_id,
                f"# task-{task_id}: {task.title}\n\n{detail}\n",
            )
            self._update_summary(updated)

            commit_error = self.repository.commit(task_id, task.title, summary_line, files)
            if commit_error is None:
                tag_error = self.repository.tag(task_id)
                if tag_error:
                    logger.warning("Could not tag task %s: %s", task_id, tag_error)
            self._fire(LifecycleHook.TASK_COMPLETE, {"TASK_ID": task_id, "TASK_TITLE": task.title})

        message = f"Task {task_id} done ({updated.count(TaskStatus.DONE)}/{len(updated.tasks)})"
        if commit_error:
            message += f"\n[git commit failed] {commit_error}\n{MANUAL_COMMIT_HINT}"
        else:
            message += " [auto-committed]"
        if is_all_done(updated.tasks):
            message += "\nAll tasks finished. Run `flowpilot finish` to wrap up."
        return message

    def resume(self) -> str:
        with self._locked():
            progress = self.repository.load_progress()
            if progress is None:
                return "No active workflow. Waiting for requirements."
            logger.debug("resume: status=%s current=%s", progress.status.value, progress.current)
            if progress.status is WorkflowStatus.IDLE:
                return "Workflow is idle. Waiting for requirements."
            if progress.status is WorkflowStatus.COMPLETED:
                return "Workflow already completed."
            if progress.status is WorkflowStatus.FINISHING:
                return (
                    f"Resuming workflow: {progress.name}\n"
                    "Wrap-up in progress. Run `flowpilot finish`."
                )

            result = resume_progress(progress)
            self.repository.save_progress(result.progress)
            if result.reset_id:
                logger.debug("resume: reset task %s", result.reset_id)
                self.repository.cleanup()

        resumed = result.progress
        lines = [
            f"Resuming workflow: {resumed.name}",
            f"Progress: {resumed.count(TaskStatus.DONE)}/{len(resumed.tasks)}",
        ]
        if result.reset_id:
            lines.append(f"Interrupted task {result.reset_id} was reset and will run again.")
        else:
            lines.append("Continue.")
        return "\n".join(lines)

    def add(self, title: str, task_type: TaskType = TaskType.GENERAL) -> str:
        with self._locked():
            progress, task = append_task(self._require_progress(), title, task_type)
            self.repository.save_progress(progress)
        return f"Added task {task.id}: {task.title} [{task.type.value}]"

    def skip(self, task_id: str) -> str:
        with self._locked():
            progress = self._require_progress()
            task = progress.find(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.status in (TaskStatus.DONE, TaskStatus.SKIPPED, TaskStatus.FAILED):
                return f"Task {task_id} is already {task.status.value}; nothing to skip."
            self.repository.save_progress(skip_task(progress, task_id))

        warning = ""
        if task.status is TaskStatus.ACTIVE:
            warning = " (warning: the task was active; a sub-agent may still be running)"
        return f"Skipped task {task_id}: {task.title}{warning}"

    def setup(self) -> str:
        """Provision the protocol file and agent hooks; report any workflow in progress."""

        existing = self.repository.load_progress()
        wrote = self.repository.ensure_protocol_file()
        self.repository.ensure_agent_hooks()

        lines: list[str] = []
        if existing is not None and existing.status in (
            WorkflowStatus.RUNNING,
            WorkflowStatus.FINISHING,
        ):
            lines.append(f"Found workflow in progress: {existing.name}")
            lines.append(f"Progress: {existing.count(TaskStatus.DONE)}/{len(existing.tasks)}")
            if existing.status is WorkflowStatus.FINISHING:
                lines.append("Status: wrapping up. Run `flowpilot finish` to continue.")
            else:
                lines.append("Run `flowpilot resume` to continue.")
        else:
            lines.append("Project set up; workflow tooling ready.")
            lines.append("Waiting for requirements (a document or a description).")

        lines.append("")
        if wrote:
            lines.append("Protocol file updated: workflow protocol added.")
        lines.append("Describe your development task to start.")
        lines.extend(self.history_suggestions())
        return "\n".join(lines)

    def review(self) -> str:
        """Record that code review passed, unlocking ``finish``."""

        with self._locked():
            progress = self._require_progress()
            if not is_all_done(progress.tasks):
                raise TasksIncompleteError
            if progress.status is WorkflowStatus.FINISHING:
                return "Review already recorded. Run `flowpilot finish`."
            self.repository.save_progress(progress.evolve(status=WorkflowStatus.FINISHING))
        return "Code review passed. Run `flowpilot finish` to wrap up."

    def finish(self) -> str:
        """Verify, require the review gate, then make the final commit and reset to idle."""

        with self._locked():
            progress = self._require_progress()
            logger.debug("finish: status=%s", progress.status.value)
            if progress.status in (WorkflowStatus.IDLE, WorkflowStatus.COMPLETED):
                return "Workflow already finished."
            if not is_all_done(progress.tasks):
                raise TasksIncompleteError

            result = self.repository.verify()
            logger.debug("finish: verify passed=%s", result.passed)
            if not result.passed:
                return (
                    f"Verification failed: {result.error}\n"
                    "Fix the problem and run `flowpilot finish` again."
                )
            if progress.status is not WorkflowStatus.FINISHING:
                return (
                    "Verification passed. Dispatch a sub-agent for code review, "
                    "then run `flowpilot review` and `flowpilot finish` again."
                )

            stats = _outcome_counts(progress)
            titles = "\n".join(
                f"- {task.id}: {task.title}" for task in progress.tasks_with_status(TaskStatus.DONE)
            )
            self._fire(LifecycleHook.WORKFLOW_FINISH, {"WORKFLOW_NAME": progress.name})
            self.repository.cleanup_injections()
            self.repository.clean_tags()
            commit_error = self.repository.commit(
                "finish",
                progress.name or "Workflow complete",
                f"{stats}\n\n{titles}",
            )
            if commit_error is None:
                self.repository.save_history(
                    collect_stats(progress.evolve(status=WorkflowStatus.COMPLETED)),
                )
                self.repository.clear_all()

        scripts = ", ".join(result.scripts) if result.scripts else "no verification commands"
        if commit_error:
            return (
                f"Verification passed: {scripts}\n{stats}\n"
                f"[git commit failed] {commit_error}\n{MANUAL_COMMIT_HINT}"
            )
        return (
            f"Verification passed: {scripts}\n{stats}\n"
            "Final commit created; the workflow is idle again.\n"
            "Waiting for the next request..."
        )

    def rollback(self, task_id: str) -> str:
        with self._locked():
            progress = self._require_progress()
            task = progress.find(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.status is not TaskStatus.DONE:
                raise InvalidTaskStateError(task_id, task.status.value, TaskStatus.DONE.value)

            error = self.repository.rollback(task_id)
            if error:
                return f"Rollback failed: {error}"
            updated, reset_count = rollback_tasks(progress, task_id)
            self.repository.save_progress(updated)
            self._update_summary(updated)
        return f"Rolled back to before task {task_id}; {reset_count} tasks reset to pending."

    def abort(self) -> str:
        with self._locked():
            progress = self.repository.load_progress()
            if progress is None:
                return "No active workflow; nothing to abort."
            self.repository.save_progress(progress.evolve(status=WorkflowStatus.ABORTED))
            self.repository.cleanup_injections()
            self.repository.clear_all()
        return f'Workflow "{progress.name}" aborted; .workflow/ cleaned up.'

    def status(self) -> WorkflowProgress | None:
        return self.repository.load_progress()

    def history_suggestions(self) -> list[str]:
        """Planning hints learned from previously finished workflows."""

        analysis = analyze_history(self.repository.load_history())
        hints = [f"Hint: {suggestion}" for suggestion in analysis.suggestions]
        if analysis.recommended_max_attempts is not None:
            hints.append(
                f"Hint: Budget up to {analysis.recommended_max_attempts} attempts per task "
                "when sizing new tasks.",
            )
        return hints

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.repository.lock(self.lock_max_wait_ms)
        try:
            yield
        finally:
            self.repository.unlock()

    def _require_progress(self) -> WorkflowProgress:
        progress = self.repository.load_progress()
        if progress is None:
            raise WorkflowNotFoundError
        return progress

    def _prepare_selection(self) -> WorkflowProgress | None:
        """Shared ``next``/``next_batch`` preamble; None when every task is terminal."""

        progress = self._require_progress()
        if is_all_done(progress.tasks):
            return None
        active = progress.tasks_with_status(TaskStatus.ACTIVE)
        if active:
            raise ActiveTasksError([task.id for task in active])

        cascaded = cascade_skip(progress.tasks)
        newly_skipped = [
            after.id
            for before, after in zip(progress.tasks, cascaded, strict=True)
            if after.status is TaskStatus.SKIPPED and before.status is not TaskStatus.SKIPPED
        ]
        if newly_skipped:
            logger.debug("cascade skip: %s", ",".join(newly_skipped))
        updated = progress.evolve(tasks=cascaded)
        # Saved before selection: a cycle error must not drop cascaded skips.
        self.repository.save_progress(updated)
        return updated

    def _assemble_context(self, task: Task, summary: str) -> str:
        parts = [summary] if summary else []
        for dep in task.deps:
            context = self.repository.load_task_context(dep)
            if context:
                parts.append(context)
        return CONTEXT_SEPARATOR.join(parts)

    def _record_failure(self, progress: WorkflowProgress, task: Task, reason: str) -> str:
        existing = self.repository.load_task_context(task.id) or ""
        previous = parse_failure_records(existing)
        warning = None
        if reason != FAILED_SENTINEL:
            warning = detect_repeated_failure(previous, reason)
        header = existing.rstrip() if existing.strip() else f"# task-{task.id}: {task.title}"
        self.repository.save_task_context(
            task.id,
            f"{header}\n\n{format_failure_record(len(previous) + 1, reason)}",
        )

        result = fail_task(progress, task.id)
        self.repository.save_progress(result.progress)
        attempt = task.retries + 1
        logger.debug(
            "checkpoint %s: fail outcome=%s retries=%s",
            task.id,
            result.outcome.value,
            attempt,
        )
        if result.outcome is FailOutcome.RETRY:
            message = f"Task {task.id} failed (attempt {attempt}); it will be retried."
        else:
            message = f"Task {task.id} failed {MAX_TASK_ATTEMPTS} times; marked failed."
        return f"{message}\n{warning}" if warning else message

    def _update_summary(self, progress: WorkflowProgress) -> None:
        contexts = {
            task.id: self.repository.load_task_context(task.id) or ""
            for task in progress.tasks_with_status(TaskStatus.DONE)
        }
        self.repository.save_summary(build_rolling_summary(progress, contexts))

    def _fire(self, hook: LifecycleHook, env: dict[str, str]) -> None:
        if self.hooks is not None:
            self.hooks.fire(hook, env)


def _failure_reason(detail: str) -> str | None:
    """Reason text when ``detail`` is a failure report, else None.

    A failure report is ``FAILED`` on its first line, optionally followed by
    the reason.
    """

    lines = detail.strip().split("\n")
    if lines[0].strip() != FAILED_SENTINEL:
        return None
    return "\n".join(lines[1:]).strip() or FAILED_SENTINEL


def _outcome_counts(progress: WorkflowProgress) -> str:
    parts = [f"{progress.count(TaskStatus.DONE)} done"]
    skipped = progress.count(TaskStatus.SKIPPED)
    failed = progress.count(TaskStatus.FAILED)
    if skipped:
        parts.append(f"{skipped} skipped")
    if failed:
        parts.append(f"{failed} failed")
    return ", ".join(parts)
