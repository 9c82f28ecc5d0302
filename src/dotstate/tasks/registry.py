"""Task registry - fixed mapping of task names to implementations."""

from __future__ import annotations

import logging
from typing import Mapping

from ..context import AppContext
from .base import Task, missing_capabilities
from .git_config import GitConfigTask
from .vscode_extensions import VscodeExtensionsTask

logger = logging.getLogger(__name__)

BUILTIN_TASKS: Mapping[str, type[Task]] = {
    GitConfigTask.name: GitConfigTask,
    VscodeExtensionsTask.name: VscodeExtensionsTask,
}


def list_tasks(registry: Mapping[str, type[Task]] = BUILTIN_TASKS) -> list[str]:
    return sorted(registry)


def load_task(name: str, ctx: AppContext, registry: Mapping[str, type[Task]] = BUILTIN_TASKS) -> Task | None:
    """Instantiate the task registered as ``name``.

    Returns ``None`` (after logging a warning) when the name is unknown or the
    implementation lacks a mandatory capability.
    """

    task_type = registry.get(name)
    if task_type is None:
        logger.warning("Skipping task '%s': no such task (available: %s)", name, ", ".join(list_tasks(registry)))
        return None

    missing = missing_capabilities(task_type)
    if missing:
        logger.warning("Skipping task '%s': missing capabilities %s", name, ", ".join(missing))
        return None

    try:
        return task_type(ctx)
    except TypeError as exc:
        logger.warning("Skipping task '%s': %s", name, exc)
        return None
