"""Global git configuration values."""

from __future__ import annotations

import logging

from ..errors import ExternalCommandFailure
from .base import Task, TaskApplyResult, TaskConfig, TaskInfo, TaskStatus

logger = logging.getLogger(__name__)

GIT = "git"


class GitConfigTask(Task):
    name = "git_config"

    def info(self) -> TaskInfo:
        return TaskInfo(self.name, "Set 'git config --global' keys listed under 'settings'")

    def status(self, config: TaskConfig, items: set[str]) -> TaskStatus:
        self.ctx.runner.require(GIT, "Install git with 'scoop install git'.")
        settings = _settings(config)
        result = TaskStatus()
        for key, value in settings.items():
            if self._get(key) == value:
                result.up_to_date.append(key)
            else:
                result.to_install.append(key)
        result.to_remove = sorted(items - set(settings))
        return result

    def apply(self, config: TaskConfig, items: set[str], *, dry_run: bool) -> TaskApplyResult:
        status = self.status(config, items)
        if not dry_run:
            settings = _settings(config)
            for key in status.to_install:
                self.ctx.runner.run([GIT, "config", "--global", key, settings[key]])
                logger.info("Set git %s", key)
            for key in status.to_remove:
                result = self.ctx.runner.run([GIT, "config", "--global", "--unset", key], check=False)
                # exit code 5 means the key was already unset
                if result.returncode not in (0, 5):
                    raise ExternalCommandFailure(result.args, result.returncode, result.stdout, result.stderr)
                logger.info("Unset git %s", key)
        return TaskApplyResult(installed=list(status.to_install), removed=list(status.to_remove))

    def _get(self, key: str) -> str | None:
        result = self.ctx.runner.run([GIT, "config", "--global", "--get", key], check=False)
        if not result.ok:
            return None
        return result.stdout.rstrip("\n")


def _settings(config: TaskConfig) -> dict[str, str]:
    raw = config.get("settings") or {}
    if not isinstance(raw, dict):
        raise ValueError("git_config.settings must be a table")
    return {str(key): str(value).lower() if isinstance(value, bool) else str(value) for key, value in raw.items()}
