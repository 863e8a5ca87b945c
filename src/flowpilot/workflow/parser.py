"""Parser for the numbered markdown task list accepted by ``init``.

Format::

    # Workflow name
    Optional one-line description
    1. [backend] Design schema
      Indented lines describe the task above
    2. [frontend] Build page (deps: 1)
"""

from __future__ import annotations

import re

from flowpilot.workflow.models import (
    TaskDefinition,
    TaskType,
    WorkflowDefinition,
    make_task_id,
)

_TASK_RE = re.compile(
    r"^(\d+)\.\s+\[\s*(\w+)\s*\]\s+(.+?)(?:\s*\(deps?\s*:\s*([^)]*)\))?\s*$",
    re.IGNORECASE,
)
_DESCRIPTION_RE = re.compile(r"^\s{2,}(.+)$")


def parse_tasks_markdown(markdown: str) -> WorkflowDefinition:
    """Parse the task list, remapping user numbering onto sequential task ids."""

    lines = markdown.split("\n")
    name = ""
    description = ""
    raw_tasks: list[tuple[str, TaskType, list[str], str]] = []
    number_to_id: dict[str, str] = {}

    position = 0
    while position < len(lines):
        line = lines[position]
        position += 1
        if not name and line.startswith("# "):
            name = line[2:].strip()
            continue
        match = _TASK_RE.match(line)
        if match is None:
            if name and not description and not line.startswith("#") and line.strip():
                description = line.strip()
            continue

        user_number, raw_type, title, raw_deps = match.groups()
        task_id = make_task_id(len(raw_tasks) + 1)
        number_to_id[user_number.zfill(3)] = task_id
        number_to_id[user_number] = task_id
        deps = [dep.strip() for dep in (raw_deps or "").split(",") if dep.strip()]

        details: list[str] = []
        while position < len(lines) and _DESCRIPTION_RE.match(lines[position]):
            details.append(lines[position].strip())
            position += 1
        raw_tasks.append((title.strip(), TaskType.parse(raw_type), deps, "\n".join(details)))

    tasks = tuple(
        TaskDefinition(
            title=title,
            type=task_type,
            deps=tuple(
                resolved
                for resolved in (_resolve_dep(dep, number_to_id) for dep in deps)
                if resolved is not None
            ),
            description=details,
        )
        for title, task_type, deps, details in raw_tasks
    )
    return WorkflowDefinition(name=name, description=description, tasks=tasks)


def _resolve_dep(reference: str, number_to_id: dict[str, str]) -> str | None:
    resolved = number_to_id.get(reference.zfill(3)) or number_to_id.get(reference)
    if resolved is not None:
        return resolved
    if reference.isdigit():
        return make_task_id(int(reference))
    return None
