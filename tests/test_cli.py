from __future__ import annotations

import json
import shutil
import subprocess
import warnings
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner, Result

from flowpilot import __version__
from flowpilot.main import flowpilot

pytestmark = [
    allure.epic("Workflow Orchestration"),
    allure.feature("CLI"),
]

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

TASKS_MD = """\
# Shop
Build a tiny shop

1. [backend] Schema
   Tables for users and orders
2. [frontend] Cart page (deps: 1)
3. [general] Docs (deps: 1)
"""


@pytest.fixture()
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.setenv("FLOWPILOT_PROJECT_ROOT", str(root))
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    monkeypatch.delenv("FLOWPILOT_VERBOSE", raising=False)
    return root


def _invoke(*args: str, input: str | None = None) -> Result:
    return CliRunner().invoke(flowpilot, list(args), input=input)


def test_version_option() -> None:
    result = _invoke("--version")

    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_without_input_sets_up_project(project: Path) -> None:
    result = _invoke("init", input="")

    assert result.exit_code == 0, result.output
    assert "Project set up; workflow tooling ready." in result.output
    assert "<!-- flowpilot:start -->" in (project / "CLAUDE.md").read_text("utf-8")
    assert (project / ".claude" / "settings.json").exists()
    assert not (project / ".workflow" / "progress.md").exists()


def test_piped_input_is_read_without_deprecation_warnings(project: Path) -> None:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = _invoke("init", input=TASKS_MD)

    assert result.exit_code == 0, result.output
    assert "Workflow initialised: Shop (3 tasks)" in result.output
    assert not [
        warning
        for warning in caught
        if issubclass(warning.category, DeprecationWarning)
        and "click" in f"{warning.filename} {warning.message}".lower()
    ]


def test_status_without_workflow(project: Path) -> None:
    result = _invoke("status")

    assert result.exit_code == 0
    assert result.output.strip() == "No active workflow."


def test_sequential_flow_without_git(project: Path) -> None:
    init = _invoke("init", input=TASKS_MD)
    assert init.exit_code == 0, init.output
    assert "Workflow initialised: Shop (3 tasks)" in init.output

    card = _invoke("next")
    assert card.exit_code == 0, card.output
    assert "--- Task 001 ---" in card.output
    assert "Description: Tables for users and orders" in card.output
    assert "# Shop" in card.output

    done = _invoke("checkpoint", "001", "schema", "ready")
    assert done.exit_code == 0, done.output
    assert "Task 001 done (1/3)" in done.output
    assert "[git commit failed]" in done.output
    assert "git add -A && git commit" in done.output
    context = project / ".workflow" / "context" / "task-001.md"
    assert "schema ready" in context.read_text("utf-8")

    batch = _invoke("next", "--batch")
    assert batch.exit_code == 0, batch.output
    assert "=== Parallel batch (2 tasks) ===" in batch.output
    assert "--- Task 002 ---" in batch.output
    assert "--- Task 003 ---" in batch.output

    status = _invoke("status")
    assert status.output.splitlines()[:5] == [
        "=== Shop ===",
        "Status: running | Progress: 1/3",
        "",
        "[x] 001 [backend] Schema - schema ready",
        "[>] 002 [frontend] Cart page",
    ]


def test_checkpoint_reads_stdin_and_detail_file(project: Path) -> None:
    _invoke("init", input=TASKS_MD)
    _invoke("next")

    failed = _invoke("checkpoint", "001", input="FAILED\nmigration crashed\n")
    assert failed.exit_code == 0, failed.output
    assert "Task 001 failed (attempt 1); it will be retried." in failed.output

    _invoke("next")
    (project / "notes.md").write_text("schema ready\nwith indexes\n", "utf-8")
    done = _invoke("checkpoint", "001", "--detail-file", "notes.md")
    assert done.exit_code == 0, done.output
    assert "Task 001 done (1/3)" in done.output


def test_checkpoint_detail_file_must_stay_in_project(project: Path, tmp_path: Path) -> None:
    _invoke("init", input=TASKS_MD)
    _invoke("next")
    outside = tmp_path / "outside.md"
    outside.write_text("sneaky", "utf-8")

    result = _invoke("checkpoint", "001", "--detail-file", str(outside))

    assert result.exit_code == 1
    assert "Error" in result.output
    assert "[>] 001" in _invoke("status").output


def test_errors_exit_with_status_one(project: Path) -> None:
    result = _invoke("checkpoint", "001", "done")

    assert result.exit_code == 1
    assert "Error" in result.output


def test_next_refuses_while_tasks_are_active(project: Path) -> None:
    _invoke("init", input=TASKS_MD)
    _invoke("next")

    result = _invoke("next")

    assert result.exit_code == 1
    assert "001" in result.output


def test_init_refuses_running_workflow_unless_forced(project: Path) -> None:
    _invoke("init", input=TASKS_MD)

    refused = _invoke("init", input=TASKS_MD)
    forced = _invoke("init", "--force", input="# Other\n\n1. [general] Only task\n")

    assert refused.exit_code == 1
    assert forced.exit_code == 0, forced.output
    assert "Workflow initialised: Other (1 tasks)" in forced.output


def test_add_skip_and_abort(project: Path) -> None:
    _invoke("init", input=TASKS_MD)

    added = _invoke("add", "Write", "changelog", "--type", "general")
    skipped = _invoke("skip", "002")
    skipped_again = _invoke("skip", "002")

    assert added.output.strip() == "Added task 004: Write changelog [general]"
    assert skipped.output.strip() == "Skipped task 002: Cart page"
    assert skipped_again.output.strip() == "Task 002 is already skipped; nothing to skip."

    aborted = _invoke("abort")
    assert aborted.output.strip() == 'Workflow "Shop" aborted; .workflow/ cleaned up.'
    assert not (project / ".workflow").exists()
    assert "<!-- flowpilot:start -->" not in (project / "CLAUDE.md").read_text("utf-8")


def test_add_rejects_unknown_type(project: Path) -> None:
    _invoke("init", input=TASKS_MD)

    result = _invoke("add", "Thing", "--type", "marketing")

    assert result.exit_code == 2


def test_resume_resets_interrupted_task(project: Path) -> None:
    _invoke("init", input=TASKS_MD)
    _invoke("next")

    result = _invoke("resume")

    assert result.exit_code == 0, result.output
    assert "Resuming workflow: Shop" in result.output
    assert "Interrupted task 001 was reset and will run again." in result.output
    assert "[ ] 001 [backend] Schema" in _invoke("status").output


def test_task_start_hook_from_project_config(project: Path) -> None:
    config = project / ".workflow" / "config.json"
    config.parent.mkdir()
    config.write_text(
        json.dumps({"hooks": {"onTaskStart": 'echo "$TASK_ID" > started.txt'}}),
        "utf-8",
    )
    _invoke("init", input=TASKS_MD)

    result = _invoke("next")

    assert result.exit_code == 0, result.output
    assert (project / "started.txt").read_text("utf-8").strip() == "001"


def _git(root: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args],
        cwd=root,
        capture_output=True,
        text=True,
        check=True,
    ).stdout


@requires_git
def test_full_flow_with_git(project: Path, git_env: None) -> None:
    _git(project, "init", "-q")
    (project / ".gitignore").write_text(".workflow/\n.flowpilot/\n", "utf-8")
    _git(project, "add", "-A")
    _git(project, "commit", "-q", "-m", "initial")

    _invoke("init", input=TASKS_MD)
    for task_id, filename in (("001", "schema.sql"), ("002", "cart.js"), ("003", "README.md")):
        card = _invoke("next")
        assert f"--- Task {task_id} ---" in card.output
        (project / filename).write_text(f"{task_id}\n", "utf-8")
        done = _invoke("checkpoint", task_id, f"wrote {filename}", "--files", filename)
        assert "[auto-committed]" in done.output, done.output

    assert "All tasks finished." in done.output
    assert _invoke("next").output.strip() == "All tasks done"
    assert "task-003: Docs" in _git(project, "log", "--format=%s")

    gated = _invoke("finish")
    assert "Dispatch a sub-agent for code review" in gated.output

    assert "Code review passed." in _invoke("review").output
    finished = _invoke("finish")

    assert finished.exit_code == 0, finished.output
    assert "Final commit created; the workflow is idle again." in finished.output
    assert not (project / ".workflow").exists()
    assert _git(project, "tag", "-l", "flowpilot/*") == ""
    assert list((project / ".flowpilot" / "history").glob("*.json"))
