from __future__ import annotations

import json
from pathlib import Path

import allure

from flowpilot.workflow.injections import (
    AGENT_SETTINGS_PATH,
    BLOCKED_TOOL_MATCHERS,
    DEFAULT_PROTOCOL_TEMPLATE,
    PROTOCOL_END_MARKER,
    PROTOCOL_START_MARKER,
    ensure_agent_hooks,
    ensure_protocol_block,
    remove_agent_hooks,
    remove_protocol_block,
)

pytestmark = [
    allure.epic("Workflow Setup"),
    allure.feature("Protocol Provisioning"),
]


def test_protocol_block_is_created_once_and_removed_cleanly(tmp_path: Path) -> None:
    path = tmp_path / "CLAUDE.md"
    path.write_text("# My project\n\nExisting notes.\n", "utf-8")

    assert ensure_protocol_block(path, DEFAULT_PROTOCOL_TEMPLATE)
    assert not ensure_protocol_block(path, DEFAULT_PROTOCOL_TEMPLATE)
    content = path.read_text("utf-8")
    assert content.startswith("# My project\n\nExisting notes.\n\n" + PROTOCOL_START_MARKER)
    assert content.rstrip().endswith(PROTOCOL_END_MARKER)

    assert remove_protocol_block(path)
    assert path.read_text("utf-8") == "# My project\n\nExisting notes.\n"
    assert not remove_protocol_block(path)


def test_protocol_block_creates_missing_file(tmp_path: Path) -> None:
    path = tmp_path / "CLAUDE.md"

    assert ensure_protocol_block(path, DEFAULT_PROTOCOL_TEMPLATE)
    assert path.read_text("utf-8").startswith("# Project\n\n" + PROTOCOL_START_MARKER)


def test_agent_hooks_merge_with_existing_settings(tmp_path: Path) -> None:
    settings_path = tmp_path / AGENT_SETTINGS_PATH
    settings_path.parent.mkdir()
    settings_path.write_text(
        json.dumps(
            {
                "model": "opus",
                "hooks": {"PreToolUse": [{"matcher": "Bash", "hooks": []}]},
            },
        ),
        "utf-8",
    )

    assert ensure_agent_hooks(tmp_path)
    assert not ensure_agent_hooks(tmp_path)
    settings = json.loads(settings_path.read_text("utf-8"))
    matchers = [entry["matcher"] for entry in settings["hooks"]["PreToolUse"]]
    assert matchers == ["Bash", *BLOCKED_TOOL_MATCHERS]
    assert settings["model"] == "opus"

    assert remove_agent_hooks(tmp_path)
    assert json.loads(settings_path.read_text("utf-8")) == {
        "model": "opus",
        "hooks": {"PreToolUse": [{"matcher": "Bash", "hooks": []}]},
    }


def test_agent_hooks_removal_drops_empty_sections(tmp_path: Path) -> None:
    assert ensure_agent_hooks(tmp_path)

    assert remove_agent_hooks(tmp_path)

    assert json.loads((tmp_path / AGENT_SETTINGS_PATH).read_text("utf-8")) == {}
