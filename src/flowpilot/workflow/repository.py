"""Persistence port for the workflow service and its file-system implementation.

Layout under the project root::

    .workflow/progress.md            task table (see progress_file)
    .workflow/tasks.md               raw task list passed to init
    .workflow/context/task-<id>.md   recorded output per task
    .workflow/context/summary.md     rolling summary
    .workflow/config.json            optional hooks / verify / protocol settings
    .workflow/.lock                  advisory lock
    .flowpilot/history/*.json        stats of finished workflows
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from flowpilot.workflow.errors import LockError
from flowpilot.workflow.git import GitClient
from flowpilot.workflow.history import WorkflowStats
from flowpilot.workflow.injections import (
    DEFAULT_PROTOCOL_TEMPLATE,
    ensure_agent_hooks,
    ensure_protocol_block,
    remove_agent_hooks,
    remove_protocol_block,
)
from flowpilot.workflow.models import VerifyResult, WorkflowProgress
from flowpilot.workflow.progress_file import decode_progress, encode_progress
from flowpilot.workflow.verify import run_verification

logger = logging.getLogger(__name__)

WORKFLOW_DIR = ".workflow"
CONTEXT_DIR = "context"
HISTORY_DIR = Path(".flowpilot") / "history"
CONFIG_FILE = "config.json"
LOCK_FILE = ".lock"


@dataclass(slots=True)
class WorkflowConfig:
    """Per-project settings read from ``.workflow/config.json``."""

    hooks: dict[str, str] = field(default_factory=dict)
    verify_commands: list[str] = field(default_factory=list)
    verify_timeout_seconds: float | None = None
    protocol_template: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkflowConfig:
        hooks = payload.get("hooks")
        verify = payload.get("verify")
        if not isinstance(verify, dict):
            verify = {}
        commands = verify.get("commands")
        timeout = verify.get("timeout")
        template = payload.get("protocolTemplate")
        return cls(
            hooks=(
                {str(name): str(command) for name, command in hooks.items() if command}
                if isinstance(hooks, dict)
                else {}
            ),
            verify_commands=(
                [str(command) for command in commands] if isinstance(commands, list) else []
            ),
            verify_timeout_seconds=(
                float(timeout) if isinstance(timeout, int | float) and timeout > 0 else None
            ),
            protocol_template=str(template) if isinstance(template, str) and template else None,
        )


class WorkflowRepository(Protocol):
    """Storage, locking and source-control port used by the workflow service."""

    def load_progress(self) -> WorkflowProgress | None: ...

    def save_progress(self, progress: WorkflowProgress) -> None: ...

    def load_task_context(self, task_id: str) -> str | None: ...

    def save_task_context(self, task_id: str, content: str) -> None: ...

    def load_summary(self) -> str: ...

    def save_summary(self, content: str) -> None: ...

    def load_tasks(self) -> str | None: ...

    def save_tasks(self, content: str) -> None: ...

    def ensure_protocol_file(self) -> bool: ...

    def ensure_agent_hooks(self) -> bool: ...

    def cleanup_injections(self) -> None: ...

    def clear_context(self) -> None: ...

    def clear_all(self) -> None: ...

    def lock(self, max_wait_ms: int) -> None: ...

    def unlock(self) -> None: ...

    def commit(
        self,
        task_id: str,
        title: str,
        summary: str,
        files: Sequence[str] | None = None,
    ) -> str | None: ...

    def tag(self, task_id: str) -> str | None: ...

    def rollback(self, task_id: str) -> str | None: ...

    def clean_tags(self) -> None: ...

    def cleanup(self) -> None: ...

    def verify(self) -> VerifyResult: ...

    def save_history(self, stats: WorkflowStats) -> None: ...

    def load_history(self) -> list[WorkflowStats]: ...


class FsWorkflowRepository:
    """File-system backed repository rooted at the project directory."""

    def __init__(
        self,
        root: Path,
        *,
        protocol_file: str = "CLAUDE.md",
        poll_interval_ms: int = 50,
        verify_timeout_seconds: float = 300.0,
        git: GitClient | None = None,
    ) -> None:
        self.root = root
        self.workflow_dir = root / WORKFLOW_DIR
        self.context_dir = self.workflow_dir / CONTEXT_DIR
        self.history_dir = root / HISTORY_DIR
        self.protocol_path = root / protocol_file
        self.poll_interval_ms = poll_interval_ms
        self.verify_timeout_seconds = verify_timeout_seconds
        self.git = git or GitClient(root)

    @property
    def lock_path(self) -> Path:
        return self.workflow_dir / LOCK_FILE

    def lock(self, max_wait_ms: int) -> None:
        """Create the lock file exclusively, waiting up to ``max_wait_ms``.

        After the wait expires the lock is treated as stale: it is removed and
        acquisition is attempted exactly once more. Without a wait budget a
        held lock is never taken over.
        """

        self.workflow_dir.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + max_wait_ms / 1000
        while True:
            if self._try_create_lock():
                return
            if time.monotonic() >= deadline:
                break
            time.sleep(self.poll_interval_ms / 1000)

        if max_wait_ms <= 0:
            raise LockError(str(self.lock_path))

        logger.warning("Lock %s held for over %sms; taking it over", self.lock_path, max_wait_ms)
        self.lock_path.unlink(missing_ok=True)
        if not self._try_create_lock():
            raise LockError(str(self.lock_path))

    def unlock(self) -> None:
        self.lock_path.unlink(missing_ok=True)

    def load_progress(self) -> WorkflowProgress | None:
        raw = _read_text(self.workflow_dir / "progress.md")
        if raw is None:
            return None
        return decode_progress(raw)

    def save_progress(self, progress: WorkflowProgress) -> None:
        _atomic_write(self.workflow_dir / "progress.md", encode_progress(progress))

    def load_task_context(self, task_id: str) -> str | None:
        return _read_text(self.context_dir / f"task-{task_id}.md")

    def save_task_context(self, task_id: str, content: str) -> None:
        _atomic_write(self.context_dir / f"task-{task_id}.md", content)

    def load_summary(self) -> str:
        return _read_text(self.context_dir / "summary.md") or ""

    def save_summary(self, content: str) -> None:
        _atomic_write(self.context_dir / "summary.md", content)

    def load_tasks(self) -> str | None:
        return _read_text(self.workflow_dir / "tasks.md")

    def save_tasks(self, content: str) -> None:
        self.workflow_dir.mkdir(parents=True, exist_ok=True)
        (self.workflow_dir / "tasks.md").write_text(content, "utf-8")

    def load_config(self) -> WorkflowConfig:
        raw = _read_text(self.workflow_dir / CONFIG_FILE)
        if raw is None:
            return WorkflowConfig()
        try:
            payload = json.loads(raw)
        except ValueError as error:
            logger.debug("Ignoring malformed %s: %s", CONFIG_FILE, error)
            return WorkflowConfig()
        if not isinstance(payload, dict):
            return WorkflowConfig()
        return WorkflowConfig.from_dict(payload)

    def protocol_template(self) -> str:
        """Custom protocol block from config, or the built-in one."""

        custom = self.load_config().protocol_template
        if custom:
            content = _read_text(self.root / custom)
            if content and content.strip():
                return content
            logger.debug("Protocol template %s missing or empty; using default", custom)
        return DEFAULT_PROTOCOL_TEMPLATE

    def ensure_protocol_file(self) -> bool:
        return ensure_protocol_block(self.protocol_path, self.protocol_template())

    def ensure_agent_hooks(self) -> bool:
        return ensure_agent_hooks(self.root)

    def cleanup_injections(self) -> None:
        remove_protocol_block(self.protocol_path)
        remove_agent_hooks(self.root)

    def clear_context(self) -> None:
        shutil.rmtree(self.context_dir, ignore_errors=True)

    def clear_all(self) -> None:
        """Remove all workflow state; ``config.json`` is project configuration and stays."""

        if not self.workflow_dir.exists():
            return
        for entry in self.workflow_dir.iterdir():
            if entry.name == CONFIG_FILE:
                continue
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
            else:
                entry.unlink(missing_ok=True)
        if not any(self.workflow_dir.iterdir()):
            self.workflow_dir.rmdir()

    def commit(
        self,
        task_id: str,
        title: str,
        summary: str,
        files: Sequence[str] | None = None,
    ) -> str | None:
        return self.git.commit(task_id, title, summary, files)

    def tag(self, task_id: str) -> str | None:
        return self.git.tag(task_id)

    def rollback(self, task_id: str) -> str | None:
        return self.git.rollback(task_id)

    def clean_tags(self) -> None:
        self.git.clean_tags()

    def cleanup(self) -> None:
        self.git.cleanup()

    def verify(self) -> VerifyResult:
        config = self.load_config()
        return run_verification(
            self.root,
            commands=config.verify_commands,
            timeout_seconds=config.verify_timeout_seconds or self.verify_timeout_seconds,
        )

    def save_history(self, stats: WorkflowStats) -> None:
        self.history_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H-%M-%S-%f")
        path = self.history_dir / f"{stamp}.json"
        path.write_text(json.dumps(stats.to_dict(), indent=2, ensure_ascii=False), "utf-8")

    def load_history(self) -> list[WorkflowStats]:
        if not self.history_dir.is_dir():
            return []
        results: list[WorkflowStats] = []
        for path in sorted(self.history_dir.glob("*.json")):
            try:
                payload = json.loads(path.read_text("utf-8"))
            except (OSError, ValueError) as error:
                logger.debug("Skipping unreadable history file %s: %s", path, error)
                continue
            if isinstance(payload, dict):
                results.append(WorkflowStats.from_dict(payload))
        return results

    def _try_create_lock(self) -> bool:
        try:
            descriptor = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        os.close(descriptor)
        return True


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text("utf-8")
    except FileNotFoundError:
        return None


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temporary = path.with_name(path.name + ".tmp")
    temporary.write_text(content, "utf-8")
    temporary.replace(path)
