"""Markdown table encoding of the workflow progress file."""

from __future__ import annotations

import re

from flowpilot.workflow.models import (
    Task,
    TaskStatus,
    TaskType,
    WorkflowProgress,
    WorkflowStatus,
)

_STATUS_PREFIX = "Status: "
_CURRENT_PREFIX = "Current: "
_NO_CURRENT = "none"
_EMPTY_CELL = "-"
_HEADER = "| ID | Title | Type | Deps | Status | Retries | Summary | Description |"
_DIVIDER = "|----|-------|------|------|--------|---------|---------|-------------|"
_ROW_RE = re.compile(
    r"^\|\s*(\d{3,})\s*\|\s*(.+?)\s*\|\s*(\w+)\s*\|\s*([^|]*?)\s*\|\s*(\w+)\s*\|"
    r"\s*(\d+)\s*\|\s*(.*?)\s*\|\s*(.*?)\s*\|$",
)


def encode_progress(progress: WorkflowProgress) -> str:
    lines = [
        f"# {progress.name}",
        "",
        f"{_STATUS_PREFIX}{progress.status.value}",
        f"{_CURRENT_PREFIX}{progress.current or _NO_CURRENT}",
        "",
        _HEADER,
        _DIVIDER,
    ]
    for task in progress.tasks:
        deps = ",".join(task.deps) if task.deps else _EMPTY_CELL
        lines.append(
            f"| {task.id} | {_escape(task.title)} | {task.type.value} | {deps} | "
            f"{task.status.value} | {task.retries} | {_escape(task.summary)} | "
            f"{_escape(task.description)} |",
        )
    return "\n".join(lines) + "\n"


def decode_progress(raw: str) -> WorkflowProgress:
    """Parse a progress file; unknown status values fall back to their defaults."""

    lines = raw.split("\n")
    name = re.sub(r"^#\s*", "", lines[0] if lines else "").strip()
    status = WorkflowStatus.IDLE
    current: str | None = None
    tasks: list[Task] = []

    for line in lines:
        if line.startswith(_STATUS_PREFIX):
            status = WorkflowStatus.parse(line[len(_STATUS_PREFIX) :])
            continue
        if line.startswith(_CURRENT_PREFIX):
            value = line[len(_CURRENT_PREFIX) :].strip()
            current = None if value in ("", _NO_CURRENT) else value
            continue
        match = _ROW_RE.match(line)
        if match is None:
            continue
        task_id, title, task_type, deps_raw, task_status, retries, summary, description = (
            match.groups()
        )
        tasks.append(
            Task(
                id=task_id,
                title=title,
                type=TaskType.parse(task_type),
                deps=_decode_deps(deps_raw),
                status=TaskStatus.parse(task_status),
                retries=int(retries),
                summary=_unescape_empty(summary),
                description=_unescape_empty(description),
            ),
        )

    return WorkflowProgress(name=name, status=status, current=current, tasks=tuple(tasks))


def _escape(value: str) -> str:
    return (value or _EMPTY_CELL).replace("|", "∣").replace("\n", " ")


def _unescape_empty(value: str) -> str:
    return "" if value == _EMPTY_CELL else value


def _decode_deps(raw: str) -> tuple[str, ...]:
    raw = raw.strip()
    if not raw or raw == _EMPTY_CELL:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())
