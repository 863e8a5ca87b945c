from __future__ import annotations

from pathlib import Path

import allure
import pytest

from flowpilot.config import LockSettings, Settings

pytestmark = [
    allure.epic("Workflow Setup"),
    allure.feature("Configuration"),
]

_ENV_NAMES = (
    "FLOWPILOT_PROJECT_ROOT",
    "FLOWPILOT_VERBOSE",
    "FLOWPILOT_PROTOCOL_FILE",
    "FLOWPILOT_LOCK_MAX_WAIT_MS",
    "FLOWPILOT_LOCK_POLL_INTERVAL_MS",
    "FLOWPILOT_HOOK_TIMEOUT_SECONDS",
    "FLOWPILOT_VERIFY_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    settings = Settings.from_env()

    assert settings.project_root == tmp_path
    assert not settings.verbose
    assert settings.protocol_file == "CLAUDE.md"
    assert settings.lock == LockSettings(max_wait_ms=5_000, poll_interval_ms=50)
    assert settings.hooks.timeout_seconds == 30.0
    assert settings.verify.timeout_seconds == 300.0


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FLOWPILOT_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("FLOWPILOT_VERBOSE", "yes")
    monkeypatch.setenv("FLOWPILOT_PROTOCOL_FILE", "AGENTS.md")
    monkeypatch.setenv("FLOWPILOT_LOCK_MAX_WAIT_MS", "250")
    monkeypatch.setenv("FLOWPILOT_HOOK_TIMEOUT_SECONDS", "2.5")

    settings = Settings.from_env()

    assert settings.project_root == tmp_path
    assert settings.verbose
    assert settings.protocol_file == "AGENTS.md"
    assert settings.lock.max_wait_ms == 250
    assert settings.hooks.timeout_seconds == 2.5


def test_explicit_arguments_win_over_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FLOWPILOT_PROJECT_ROOT", "/somewhere/else")
    monkeypatch.setenv("FLOWPILOT_VERBOSE", "1")

    settings = Settings.from_env(project_root=tmp_path, verbose=False)

    assert settings.project_root == tmp_path
    assert not settings.verbose


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("FLOWPILOT_VERBOSE", "maybe", "Invalid boolean value for FLOWPILOT_VERBOSE"),
        (
            "FLOWPILOT_LOCK_MAX_WAIT_MS",
            "soon",
            "Invalid integer value for FLOWPILOT_LOCK_MAX_WAIT_MS",
        ),
        ("FLOWPILOT_LOCK_MAX_WAIT_MS", "0", "FLOWPILOT_LOCK_MAX_WAIT_MS must be > 0"),
        ("FLOWPILOT_VERIFY_TIMEOUT_SECONDS", "0", "FLOWPILOT_VERIFY_TIMEOUT_SECONDS must be > 0"),
    ],
)
def test_from_env_rejects_invalid_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()
