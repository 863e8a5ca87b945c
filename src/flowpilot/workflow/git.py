"""Git integration: per-task commits, task tags, rollback and interrupt cleanup.

Every public method reports failure as an error string instead of raising,
so a broken git setup never blocks a workflow state transition.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

TAG_NAMESPACE = "flowpilot"
TAG_PREFIX = f"{TAG_NAMESPACE}/task-"
STASH_MESSAGE = "flowpilot-resume: auto-stashed on interrupt recovery"


class GitClient:
    """Runs git commands in the project root, with submodule-aware commits."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def commit(
        self,
        task_id: str,
        title: str,
        summary: str,
        files: Sequence[str] | None = None,
    ) -> str | None:
        """Stage ``files`` (or everything) and commit if anything is staged."""

        message = f"task-{task_id}: {title}\n\n{summary}"
        try:
            submodules = self._submodules()
        except subprocess.CalledProcessError as error:
            return _describe(error)

        if not submodules:
            return self._commit_in(self.root, list(files) if files else None, message)

        errors: list[str] = []
        if files:
            groups = _group_by_submodule(files, submodules)
            for submodule, submodule_files in groups.items():
                if submodule:
                    error = self._commit_in(self.root / submodule, submodule_files, message)
                    if error:
                        errors.append(error)
            touched = [submodule for submodule in groups if submodule]
            error = self._commit_in(self.root, [*touched, *groups.get("", [])], message)
            if error:
                errors.append(f"parent: {error}")
        else:
            for submodule in submodules:
                error = self._commit_in(self.root / submodule, None, message)
                if error:
                    errors.append(error)
            error = self._commit_in(self.root, None, message)
            if error:
                errors.append(error)
        return "\n".join(errors) if errors else None

    def tag(self, task_id: str) -> str | None:
        try:
            self._git("tag", f"{TAG_PREFIX}{task_id}")
        except subprocess.CalledProcessError as error:
            return _describe(error)
        return None

    def rollback(self, task_id: str) -> str | None:
        """Revert every commit after the task's tag as one new commit."""

        tag = f"{TAG_PREFIX}{task_id}"
        try:
            self._git("rev-parse", tag)
            pending = self._git("log", "--oneline", f"{tag}..HEAD").strip()
            if not pending:
                return "Nothing to roll back: no commits after the task tag."
            self._git("revert", "--no-commit", f"{tag}..HEAD")
            self._git("commit", "-m", f"rollback: revert to task-{task_id}")
        except subprocess.CalledProcessError as error:
            try:
                self._git("revert", "--abort")
            except subprocess.CalledProcessError:
                logger.debug("git revert --abort had nothing to abort")
            return _describe(error)
        return None

    def clean_tags(self) -> None:
        try:
            tags = self._git("tag", "-l", f"{TAG_NAMESPACE}/*").split()
            for tag in tags:
                self._git("tag", "-d", tag)
        except subprocess.CalledProcessError as error:
            logger.warning("Could not remove workflow tags: %s", _describe(error))

    def cleanup(self) -> None:
        """Stash uncommitted changes left by an interrupted task."""

        try:
            if self._git("status", "--porcelain").strip():
                self._git("stash", "push", "-m", STASH_MESSAGE)
                logger.info("Stashed uncommitted changes: %s", STASH_MESSAGE)
        except subprocess.CalledProcessError as error:
            logger.warning("Could not stash working tree: %s", _describe(error))

    def _submodules(self) -> list[str]:
        if not (self.root / ".gitmodules").exists():
            return []
        output = self._git("submodule", "--quiet", "foreach", "echo $sm_path")
        return [line for line in output.splitlines() if line]

    def _commit_in(self, cwd: Path, files: list[str] | None, message: str) -> str | None:
        try:
            if files:
                for path in files:
                    self._git("add", path, cwd=cwd)
            else:
                self._git("add", "-A", cwd=cwd)
            if self._has_staged_changes(cwd):
                self._git("commit", "-F", "-", cwd=cwd, stdin=message)
        except subprocess.CalledProcessError as error:
            return f"{cwd}: {_describe(error)}"
        return None

    def _has_staged_changes(self, cwd: Path) -> bool:
        completed = subprocess.run(
            ["git", "diff", "--cached", "--quiet"],
            cwd=cwd,
            capture_output=True,
            check=False,
        )
        return completed.returncode != 0

    def _git(self, *args: str, cwd: Path | None = None, stdin: str | None = None) -> str:
        try:
            completed = subprocess.run(
                ["git", *args],
                cwd=cwd or self.root,
                input=stdin,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as error:
            raise subprocess.CalledProcessError(127, ["git", *args], stderr=str(error)) from error
        return completed.stdout


def _group_by_submodule(files: Sequence[str], submodules: Sequence[str]) -> dict[str, list[str]]:
    """Map submodule path (``""`` for the parent repo) to files relative to it."""

    longest_first = sorted(submodules, key=len, reverse=True)
    groups: dict[str, list[str]] = {}
    for path in files:
        normalized = path.replace("\\", "/")
        owner = next((sub for sub in longest_first if normalized.startswith(sub + "/")), "")
        relative = normalized[len(owner) + 1 :] if owner else normalized
        groups.setdefault(owner, []).append(relative)
    return groups


def _describe(error: subprocess.CalledProcessError) -> str:
    stderr = error.stderr.strip() if isinstance(error.stderr, str) else ""
    return stderr or str(error)
