"""Project verification: run configured or auto-detected build/test/lint commands."""

from __future__ import annotations

import json
import logging
import re
import subprocess
from collections.abc import Sequence
from pathlib import Path

from flowpilot.workflow.models import VerifyResult

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW_CHARS = 500
_NO_TESTS_MARKERS = ("No test files found", "no test files")


def run_verification(
    root: Path,
    *,
    commands: Sequence[str] = (),
    timeout_seconds: float,
) -> VerifyResult:
    """Run each command in order and stop at the first failure.

    An empty command list (nothing configured, nothing detected) passes.
    """

    scripts = list(commands) or detect_commands(root)
    if not scripts:
        return VerifyResult(passed=True, scripts=[])

    for command in scripts:
        logger.debug("verify: running %s", command)
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=root,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return VerifyResult(
                passed=False,
                scripts=scripts,
                error=f"{command} timed out after {timeout_seconds:g}s",
            )
        if completed.returncode == 0:
            continue
        output = completed.stderr or completed.stdout or ""
        if any(marker in output for marker in _NO_TESTS_MARKERS):
            continue
        return VerifyResult(
            passed=False,
            scripts=scripts,
            error=f"{command} failed:\n{output[:OUTPUT_PREVIEW_CHARS]}",
        )
    return VerifyResult(passed=True, scripts=scripts)


def detect_commands(root: Path) -> list[str]:  # noqa: C901, PLR0911
    """Guess verification commands from the project's build files."""

    def has(name: str) -> bool:
        return (root / name).exists()

    if has("package.json"):
        try:
            scripts = json.loads((root / "package.json").read_text("utf-8")).get("scripts") or {}
        except (OSError, ValueError, AttributeError):
            scripts = {}
        return [f"npm run {name}" for name in ("build", "test", "lint") if name in scripts]
    if has("Cargo.toml"):
        return ["cargo build", "cargo test"]
    if has("go.mod"):
        return ["go build ./...", "go test ./..."]
    if has("pyproject.toml") or has("setup.py") or has("requirements.txt"):
        commands: list[str] = []
        if has("pyproject.toml"):
            text = (root / "pyproject.toml").read_text("utf-8")
            if "ruff" in text:
                commands.append("ruff check .")
            if "mypy" in text:
                commands.append("mypy .")
        commands.append("python -m pytest --tb=short -q")
        return commands
    if has("pom.xml"):
        return ["mvn compile -q", "mvn test -q"]
    if has("build.gradle") or has("build.gradle.kts"):
        return ["gradle build"]
    if has("CMakeLists.txt"):
        return ["cmake --build build", "ctest --test-dir build"]
    if has("Makefile"):
        makefile = (root / "Makefile").read_text("utf-8")
        return [
            f"make {target}"
            for target in ("build", "test", "lint")
            if re.search(rf"^{target}\s*:", makefile, re.MULTILINE)
        ]
    return []
