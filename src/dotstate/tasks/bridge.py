"""Folds task status and apply results into plans and the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..context import AppContext
from ..ledger import Ledger
from ..models import PlanItem, ReconciliationPlan
from .base import Task
from .registry import BUILTIN_TASKS, load_task

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskRunSummary:
    plans: list[ReconciliationPlan] = field(default_factory=list)
    changes: int = 0
    errors: list[str] = field(default_factory=list)


class TaskBridge:
    """Runs each configured task in isolation.

    A task that cannot be loaded is skipped. A task that raises is rolled back
    when it supports it and reported as an error; later tasks still run.
    """

    def __init__(self, ctx: AppContext, registry: Mapping[str, type[Task]] = BUILTIN_TASKS) -> None:
        self.ctx = ctx
        self.registry = registry

    def run(self, configs: Mapping[str, Mapping[str, Any]], ledger: Ledger, *, dry_run: bool) -> TaskRunSummary:
        summary = TaskRunSummary()
        names = list(configs)
        # tasks dropped from the document still get a chance to remove their items
        names.extend(sorted(name for name in ledger.tasks if name not in configs))

        for name in names:
            task = load_task(name, self.ctx, self.registry)
            if task is None:
                continue
            config = configs.get(name) or {}
            try:
                plan, changes = self._run_task(task, name, config, ledger, dry_run=dry_run)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Task '%s' failed: %s", name, exc)
                summary.errors.append(f"{name}: {exc}")
                self._rollback(task, name, config, ledger)
            else:
                summary.plans.append(plan)
                summary.changes += changes
            finally:
                task.cleanup()

        return summary

    def _run_task(
        self,
        task: Task,
        name: str,
        config: Mapping[str, Any],
        ledger: Ledger,
        *,
        dry_run: bool,
    ) -> tuple[ReconciliationPlan, int]:
        logger.debug("Running task %s: %s", name, task.info().description)
        items = ledger.task_items(name)
        status = task.status(config, items)
        adopted = sorted(set(status.up_to_date) - items)

        plan = ReconciliationPlan(domain=f"task {name}")
        plan.to_add.extend(PlanItem(item) for item in status.to_install)
        plan.to_remove.extend(PlanItem(item) for item in status.to_remove)
        plan.to_track.extend(PlanItem(item) for item in adopted)
        plan.unchanged = len(status.up_to_date) - len(adopted)

        result = task.apply(config, items, dry_run=dry_run)
        if not dry_run:
            ledger.update_task_items(name, added=set(result.installed) | set(adopted), removed=set(result.removed))
        return plan, len(result.installed) + len(result.removed) + len(adopted)

    def _rollback(self, task: Task, name: str, config: Mapping[str, Any], ledger: Ledger) -> None:
        if not task.supports_rollback():
            return
        try:
            task.rollback(config, ledger.task_items(name))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Rollback of task '%s' failed: %s", name, exc)
