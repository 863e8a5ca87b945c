"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from flowpilot.workflow.history import WorkflowStats
from flowpilot.workflow.hooks import LifecycleHook, LifecycleHookRunner
from flowpilot.workflow.models import (
    Task,
    TaskStatus,
    TaskType,
    VerifyResult,
    WorkflowProgress,
    WorkflowStatus,
)
from flowpilot.workflow.services import WorkflowService


class InMemoryWorkflowRepository:
    """Repository double: keeps state in memory and records side effects."""

    def __init__(self) -> None:
        self.progress: WorkflowProgress | None = None
        self.contexts: dict[str, str] = {}
        self.summary = ""
        self.tasks_markdown: str | None = None
        self.history: list[WorkflowStats] = []
        self.commits: list[tuple[str, str, str, list[str] | None]] = []
        self.tags: list[str] = []
        self.rollbacks: list[str] = []
        self.commit_error: str | None = None
        self.rollback_error: str | None = None
        self.verify_result = VerifyResult(passed=True, scripts=["pytest"])
        self.lock_calls = 0
        self.unlock_calls = 0
        self.cleanup_calls = 0
        self.injections_removed = 0
        self.tags_cleaned = 0
        self.protocol_provisioned = False
        self.hooks_provisioned = False

    def load_progress(self) -> WorkflowProgress | None:
        return self.progress

    def save_progress(self, progress: WorkflowProgress) -> None:
        self.progress = progress

    def load_task_context(self, task_id: str) -> str | None:
        return self.contexts.get(task_id)

    def save_task_context(self, task_id: str, content: str) -> None:
        self.contexts[task_id] = content

    def load_summary(self) -> str:
        return self.summary

    def save_summary(self, content: str) -> None:
        self.summary = content

    def load_tasks(self) -> str | None:
        return self.tasks_markdown

    def save_tasks(self, content: str) -> None:
        self.tasks_markdown = content

    def ensure_protocol_file(self) -> bool:
        wrote = not self.protocol_provisioned
        self.protocol_provisioned = True
        return wrote

    def ensure_agent_hooks(self) -> bool:
        wrote = not self.hooks_provisioned
        self.hooks_provisioned = True
        return wrote

    def cleanup_injections(self) -> None:
        self.injections_removed += 1
        self.protocol_provisioned = False
        self.hooks_provisioned = False

    def clear_context(self) -> None:
        self.contexts.clear()
        self.summary = ""

    def clear_all(self) -> None:
        self.clear_context()
        self.progress = None
        self.tasks_markdown = None

    def lock(self, max_wait_ms: int) -> None:
        self.lock_calls += 1

    def unlock(self) -> None:
        self.unlock_calls += 1

    def commit(
        self,
        task_id: str,
        title: str,
        summary: str,
        files: Sequence[str] | None = None,
    ) -> str | None:
        self.commits.append((task_id, title, summary, list(files) if files else None))
        return self.commit_error

    def tag(self, task_id: str) -> str | None:
        self.tags.append(task_id)
        return None

    def rollback(self, task_id: str) -> str | None:
        self.rollbacks.append(task_id)
        return self.rollback_error

    def clean_tags(self) -> None:
        self.tags_cleaned += 1

    def cleanup(self) -> None:
        self.cleanup_calls += 1

    def verify(self) -> VerifyResult:
        return self.verify_result

    def save_history(self, stats: WorkflowStats) -> None:
        self.history.append(stats)

    def load_history(self) -> list[WorkflowStats]:
        return list(self.history)


class RecordingHookRunner(LifecycleHookRunner):
    """Hook runner that records fired hooks instead of running shell commands."""

    def __init__(self) -> None:
        super().__init__(Path("."), {})
        self.fired: list[tuple[LifecycleHook, dict[str, str]]] = []

    def fire(self, hook: LifecycleHook, env: Mapping[str, str]) -> bool:
        self.fired.append((hook, dict(env)))
        return True


def make_task(
    task_id: str,
    status: TaskStatus = TaskStatus.PENDING,
    deps: tuple[str, ...] = (),
    **changes: object,
) -> Task:
    fields: dict[str, object] = {
        "title": f"Task {task_id}",
        "type": TaskType.GENERAL,
        **changes,
    }
    return Task(id=task_id, status=status, deps=deps, **fields)  # type: ignore[arg-type]


def make_progress(
    *tasks: Task,
    status: WorkflowStatus = WorkflowStatus.RUNNING,
) -> WorkflowProgress:
    return WorkflowProgress(name="Demo", status=status, tasks=tasks)


@pytest.fixture()
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture()
def hooks() -> RecordingHookRunner:
    return RecordingHookRunner()


@pytest.fixture()
def service(repository: InMemoryWorkflowRepository, hooks: RecordingHookRunner) -> WorkflowService:
    return WorkflowService(repository=repository, hooks=hooks)


@pytest.fixture()
def git_env(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate git from user/system config and give it a committer identity."""

    global_config = tmp_path_factory.mktemp("git") / "gitconfig"
    global_config.write_text("", "utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for prefix in ("GIT_AUTHOR", "GIT_COMMITTER"):
        monkeypatch.setenv(f"{prefix}_NAME", "Flow Tester")
        monkeypatch.setenv(f"{prefix}_EMAIL", "tester@example.com")
