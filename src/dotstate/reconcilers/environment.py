"""Reconciliation of persistent environment variables."""

from __future__ import annotations

import logging
from typing import Callable

from ..config import DesiredState, ScopedVariables
from ..ledger import SCOPES, Ledger
from ..models import PlanItem, ReconciliationPlan
from ..process import CommandRunner, require_elevation_helper
from ..system.environment import EnvironmentStore
from .base import Reconciler

logger = logging.getLogger(__name__)

EnvironmentPlan = dict[str, ReconciliationPlan]


def diff_environment(
    desired: ScopedVariables,
    ledger: Ledger,
    probe: Callable[[str, str], str | None],
) -> EnvironmentPlan:
    """Per scope: add missing, overwrite differing, adopt matching, remove tracked-but-unconfigured.

    Variables that are neither configured nor tracked are never touched.
    """

    plans: EnvironmentPlan = {}
    for scope in SCOPES:
        plan = ReconciliationPlan(domain=f"environment ({scope})")
        configured = desired.scope(scope)
        tracked = ledger.environment[scope]
        for name, value in configured.items():
            live = probe(scope, name)
            if live is None:
                plan.to_add.append(PlanItem(name, detail=value))
            elif live != value:
                plan.to_update.append(PlanItem(name, detail=value, reason=f"was {live!r}"))
            elif name not in tracked:
                plan.to_track.append(PlanItem(name))
            else:
                plan.unchanged += 1
        for name in sorted(tracked - set(configured)):
            plan.to_remove.append(PlanItem(name))
        plans[scope] = plan
    return plans


class EnvironmentReconciler(Reconciler[EnvironmentPlan]):
    name = "environment"

    def __init__(self, store_factory: Callable[[], EnvironmentStore], runner: CommandRunner) -> None:
        self._store_factory = store_factory
        self.runner = runner

    def enabled(self, desired: DesiredState, ledger: Ledger) -> bool:
        return any(desired.environment.scope(scope) or ledger.environment[scope] for scope in SCOPES)

    def diff(self, desired: DesiredState, ledger: Ledger) -> EnvironmentPlan:
        store = self._store_factory()
        return diff_environment(desired.environment, ledger, store.get)

    def apply(self, plan: EnvironmentPlan, ledger: Ledger, *, dry_run: bool) -> int:
        machine = plan["machine"]
        if machine.to_add or machine.to_update or machine.to_remove:
            require_elevation_helper(self.runner)

        changes = sum(scope_plan.change_count for scope_plan in plan.values())
        if dry_run:
            return changes

        store = self._store_factory()
        mutated = False
        for scope, scope_plan in plan.items():
            tracked = ledger.environment[scope]
            for item in (*scope_plan.to_add, *scope_plan.to_update):
                store.set(scope, item.key, item.detail or "")
                tracked.add(item.key)
                mutated = True
                logger.info("Set %s variable %s", scope, item.key)
            for item in scope_plan.to_track:
                tracked.add(item.key)
            for item in scope_plan.to_remove:
                store.delete(scope, item.key)
                tracked.discard(item.key)
                mutated = True
                logger.info("Removed %s variable %s", scope, item.key)
        if mutated:
            store.notify_change()
        return changes

    def plans(self, plan: EnvironmentPlan) -> list[ReconciliationPlan]:
        return list(plan.values())
