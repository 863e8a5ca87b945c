from __future__ import annotations

import logging
from pathlib import Path

import allure
import pytest

from flowpilot.workflow.hooks import LifecycleHook, LifecycleHookRunner

pytestmark = [
    allure.epic("Workflow Orchestration"),
    allure.feature("Lifecycle Hooks"),
]


def test_hook_runs_in_project_root_with_extra_env(tmp_path: Path) -> None:
    runner = LifecycleHookRunner(
        tmp_path,
        {"onTaskStart": 'echo "$TASK_ID:$TASK_TITLE" > started.txt'},
    )

    assert runner.fire(LifecycleHook.TASK_START, {"TASK_ID": "001", "TASK_TITLE": "Schema"})
    assert (tmp_path / "started.txt").read_text("utf-8") == "001:Schema\n"


def test_unconfigured_hook_is_a_no_op(tmp_path: Path) -> None:
    runner = LifecycleHookRunner(tmp_path, {})

    assert not runner.fire(LifecycleHook.WORKFLOW_FINISH, {"WORKFLOW_NAME": "Demo"})


def test_failing_hook_is_logged_not_raised(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    runner = LifecycleHookRunner(tmp_path, {"onTaskComplete": "exit 7"})

    with caplog.at_level(logging.WARNING, logger="flowpilot.workflow.hooks"):
        assert not runner.fire(LifecycleHook.TASK_COMPLETE, {"TASK_ID": "001"})

    assert 'hook "onTaskComplete" failed with exit code 7' in caplog.text


def test_slow_hook_times_out(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    runner = LifecycleHookRunner(tmp_path, {"onTaskStart": "sleep 5"}, timeout_seconds=0.2)

    with caplog.at_level(logging.WARNING, logger="flowpilot.workflow.hooks"):
        assert not runner.fire(LifecycleHook.TASK_START, {})

    assert "timed out after 0.2s" in caplog.text
