"""Provisioning of the agent protocol block and tool-blocking agent hooks."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PROTOCOL_START_MARKER = "<!-- flowpilot:start -->"
PROTOCOL_END_MARKER = "<!-- flowpilot:end -->"
AGENT_SETTINGS_PATH = Path(".claude") / "settings.json"
BLOCKED_TOOL_MATCHERS = ("TaskCreate", "TaskUpdate", "TaskList")
BLOCK_PROMPT = (
    "BLOCK this tool call. FlowPilot requires using flowpilot commands "
    "instead of native task tools."
)

DEFAULT_PROTOCOL_TEMPLATE = f"""\
{PROTOCOL_START_MARKER}
## FlowPilot workflow protocol

You are the dispatcher. Do not implement tasks yourself; delegate each task to a
sub-agent and drive the workflow exclusively through the `flowpilot` CLI.

1. Turn the request into a numbered task list and pipe it to `flowpilot init`:

   ```
   # Workflow name
   One-line description
   1. [backend] Design schema
      Details indented under the task
   2. [frontend] Build page (deps: 1)
   ```

2. Loop until `flowpilot next` prints "All tasks done":
   - `flowpilot next --batch` returns every task that can run in parallel.
   - Give each sub-agent its full task card, including the checkpoint commands.
   - Sub-agents report with `flowpilot checkpoint <id>` (success detail on stdin,
     `--files` for changed files) or `echo FAILED | flowpilot checkpoint <id>`.
   - Mark key lines in checkpoint detail with [DECISION], [ARCHITECTURE] or
     [IMPORTANT] so they survive in the rolling summary.
3. After an interruption run `flowpilot resume` before anything else.
4. When every task is finished run `flowpilot finish`; when verification passes,
   dispatch a code review, then run `flowpilot review` and `flowpilot finish` again.

Never edit files under `.workflow/` by hand.
{PROTOCOL_END_MARKER}
"""

_PROTOCOL_BLOCK_RE = re.compile(
    r"\n*" + re.escape(PROTOCOL_START_MARKER) + r".*?" + re.escape(PROTOCOL_END_MARKER) + r"\n*",
    re.DOTALL,
)


def ensure_protocol_block(path: Path, template: str) -> bool:
    """Append the protocol block to ``path`` unless it is already there.

    Returns True when the file was written.
    """

    block = template.strip()
    if path.exists():
        content = path.read_text("utf-8")
        if PROTOCOL_START_MARKER in content:
            return False
        path.write_text(content.rstrip() + "\n\n" + block + "\n", "utf-8")
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("# Project\n\n" + block + "\n", "utf-8")
    return True


def remove_protocol_block(path: Path) -> bool:
    if not path.exists():
        return False
    content = path.read_text("utf-8")
    cleaned = _PROTOCOL_BLOCK_RE.sub("\n", content)
    if cleaned == content:
        return False
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).rstrip() + "\n"
    path.write_text(cleaned, "utf-8")
    return True


def ensure_agent_hooks(project_root: Path) -> bool:
    """Merge tool-blocking ``PreToolUse`` hooks into the agent settings file.

    Idempotent: returns False if the hooks are already registered.
    """

    path = project_root / AGENT_SETTINGS_PATH
    settings = _read_settings(path)
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        hooks = {}
    existing = hooks.get("PreToolUse")
    if not isinstance(existing, list):
        existing = []
    if any(
        isinstance(entry, dict) and entry.get("matcher") == BLOCKED_TOOL_MATCHERS[0]
        for entry in existing
    ):
        return False

    hooks["PreToolUse"] = [
        *existing,
        *(_blocking_hook(matcher) for matcher in BLOCKED_TOOL_MATCHERS),
    ]
    settings["hooks"] = hooks
    _write_settings(path, settings)
    return True


def remove_agent_hooks(project_root: Path) -> bool:
    path = project_root / AGENT_SETTINGS_PATH
    if not path.exists():
        return False
    settings = _read_settings(path)
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict) or not isinstance(hooks.get("PreToolUse"), list):
        return False

    remaining = [
        entry
        for entry in hooks["PreToolUse"]
        if not (isinstance(entry, dict) and entry.get("matcher") in BLOCKED_TOOL_MATCHERS)
    ]
    if remaining:
        hooks["PreToolUse"] = remaining
    else:
        del hooks["PreToolUse"]
    if not hooks:
        del settings["hooks"]
    _write_settings(path, settings)
    return True


def _blocking_hook(matcher: str) -> dict[str, Any]:
    return {"matcher": matcher, "hooks": [{"type": "prompt", "prompt": BLOCK_PROMPT}]}


def _read_settings(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError) as error:
        logger.warning("Ignoring unreadable agent settings %s: %s", path, error)
        return {}
    if not isinstance(payload, dict):
        return {}
    return payload


def _write_settings(path: Path, settings: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings, indent=2, ensure_ascii=False) + "\n", "utf-8")
