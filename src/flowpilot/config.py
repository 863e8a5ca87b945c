"""Runtime configuration for the workflow CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class LockSettings:
    """Advisory lock acquisition settings."""

    max_wait_ms: int = 5_000
    poll_interval_ms: int = 50


@dataclass(slots=True)
class HookSettings:
    """Lifecycle hook execution settings."""

    timeout_seconds: float = 30.0


@dataclass(slots=True)
class VerifySettings:
    """Verification command settings."""

    timeout_seconds: float = 300.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    project_root: Path = field(default_factory=Path.cwd)
    verbose: bool = False
    protocol_file: str = "CLAUDE.md"
    lock: LockSettings = field(default_factory=LockSettings)
    hooks: HookSettings = field(default_factory=HookSettings)
    verify: VerifySettings = field(default_factory=VerifySettings)

    @classmethod
    def from_env(
        cls,
        project_root: Path | None = None,
        verbose: bool | None = None,
    ) -> Settings:
        """Load settings from environment; explicit arguments win over env values."""

        root_raw = os.getenv("FLOWPILOT_PROJECT_ROOT", "").strip()
        resolved_root = project_root or (Path(root_raw) if root_raw else Path.cwd())
        settings = cls(
            project_root=resolved_root,
            verbose=(
                verbose
                if verbose is not None
                else _env_bool("FLOWPILOT_VERBOSE", default=False)
            ),
            protocol_file=os.getenv("FLOWPILOT_PROTOCOL_FILE", "CLAUDE.md").strip() or "CLAUDE.md",
            lock=LockSettings(
                max_wait_ms=_env_int("FLOWPILOT_LOCK_MAX_WAIT_MS", 5_000),
                poll_interval_ms=_env_int("FLOWPILOT_LOCK_POLL_INTERVAL_MS", 50),
            ),
            hooks=HookSettings(
                timeout_seconds=_env_float("FLOWPILOT_HOOK_TIMEOUT_SECONDS", 30.0),
            ),
            verify=VerifySettings(
                timeout_seconds=_env_float("FLOWPILOT_VERIFY_TIMEOUT_SECONDS", 300.0),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.lock.max_wait_ms <= 0:
            raise ValueError("FLOWPILOT_LOCK_MAX_WAIT_MS must be > 0.")
        if self.lock.poll_interval_ms <= 0:
            raise ValueError("FLOWPILOT_LOCK_POLL_INTERVAL_MS must be > 0.")
        if self.hooks.timeout_seconds <= 0:
            raise ValueError("FLOWPILOT_HOOK_TIMEOUT_SECONDS must be > 0.")
        if self.verify.timeout_seconds <= 0:
            raise ValueError("FLOWPILOT_VERIFY_TIMEOUT_SECONDS must be > 0.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
