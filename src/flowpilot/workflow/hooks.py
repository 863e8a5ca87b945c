"""User-configured shell hooks fired at workflow lifecycle points."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class LifecycleHook(str, Enum):
    """Hook names as they appear under ``hooks`` in ``.workflow/config.json``."""

    TASK_START = "onTaskStart"
    TASK_COMPLETE = "onTaskComplete"
    WORKFLOW_FINISH = "onWorkflowFinish"


class LifecycleHookRunner:
    """Fire-and-forget hook execution: failures are logged, never raised."""

    def __init__(
        self,
        root: Path,
        commands: Mapping[str, str],
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.root = root
        self.commands = dict(commands)
        self.timeout_seconds = timeout_seconds

    def fire(self, hook: LifecycleHook, env: Mapping[str, str]) -> bool:
        """Run the hook's command if configured; True when it ran and succeeded."""

        command = self.commands.get(hook.value)
        if not command:
            return False

        logger.debug('hook "%s" executing: %s', hook.value, command)
        try:
            subprocess.run(
                command,
                shell=True,
                cwd=self.root,
                env={**os.environ, **env},
                capture_output=True,
                timeout=self.timeout_seconds,
                check=True,
            )
        except subprocess.TimeoutExpired:
            logger.warning(
                'hook "%s" timed out after %gs',
                hook.value,
                self.timeout_seconds,
            )
            return False
        except subprocess.CalledProcessError as error:
            logger.warning('hook "%s" failed with exit code %s', hook.value, error.returncode)
            return False
        except OSError as error:
            logger.warning('hook "%s" could not start: %s', hook.value, error)
            return False
        return True
