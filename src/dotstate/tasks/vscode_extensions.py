"""Visual Studio Code extensions."""

from __future__ import annotations

import logging

from ..context import AppContext
from .base import Task, TaskApplyResult, TaskConfig, TaskInfo, TaskStatus

logger = logging.getLogger(__name__)

CODE = "code"


class VscodeExtensionsTask(Task):
    name = "vscode_extensions"

    def __init__(self, ctx: AppContext) -> None:
        super().__init__(ctx)
        self._installed: set[str] | None = None
        self._installed_this_run: list[str] = []

    def info(self) -> TaskInfo:
        return TaskInfo(self.name, "Install VS Code extensions listed under 'extensions'")

    def status(self, config: TaskConfig, items: set[str]) -> TaskStatus:
        wanted = _configured(config)
        live = self._live()
        result = TaskStatus()
        for extension in wanted:
            if extension.casefold() in live:
                result.up_to_date.append(extension)
            else:
                result.to_install.append(extension)
        configured = {extension.casefold() for extension in wanted}
        result.to_remove = sorted(item for item in items if item.casefold() not in configured)
        return result

    def apply(self, config: TaskConfig, items: set[str], *, dry_run: bool) -> TaskApplyResult:
        status = self.status(config, items)
        result = TaskApplyResult(installed=list(status.to_install), removed=list(status.to_remove))
        if dry_run:
            return result

        live = self._live()
        for extension in status.to_install:
            self.ctx.runner.run([CODE, "--install-extension", extension, "--force"])
            self._installed_this_run.append(extension)
            logger.info("Installed extension %s", extension)
        for extension in status.to_remove:
            if extension.casefold() in live:
                self.ctx.runner.run([CODE, "--uninstall-extension", extension])
                logger.info("Uninstalled extension %s", extension)
        return result

    def rollback(self, config: TaskConfig, items: set[str]) -> None:
        for extension in reversed(self._installed_this_run):
            self.ctx.runner.run([CODE, "--uninstall-extension", extension], check=False)
        self._installed_this_run.clear()

    def cleanup(self) -> None:
        self._installed = None
        self._installed_this_run = []

    def _live(self) -> set[str]:
        if self._installed is None:
            self.ctx.runner.require(CODE, "Install Visual Studio Code and make sure 'code' is on PATH.")
            result = self.ctx.runner.run([CODE, "--list-extensions"])
            self._installed = {line.strip().casefold() for line in result.stdout.splitlines() if line.strip()}
        return self._installed


def _configured(config: TaskConfig) -> list[str]:
    raw = config.get("extensions") or []
    if not isinstance(raw, list):
        raise ValueError("vscode_extensions.extensions must be a list")
    return [str(extension) for extension in raw]
