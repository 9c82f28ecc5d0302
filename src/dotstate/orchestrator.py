"""High level orchestration of a reconciliation run."""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from .config import DesiredState
from .context import AppContext
from .errors import ErrorAction, error_action
from .ledger import Ledger
from .models import PhaseResult, RunReport
from .reconcilers import (
    DotfilesReconciler,
    EncryptedFilesReconciler,
    EnvironmentReconciler,
    PathReconciler,
    Reconciler,
    ScoopReconciler,
    WingetReconciler,
)
from .secret import AgeTool, build_resolver
from .system import AclApplier, EnvironmentStore, ScoopClient, WindowsEnvironmentStore, WingetClient
from .tasks import TaskBridge

logger = logging.getLogger(__name__)

TASKS_PHASE = "tasks"


class Orchestrator:
    """Runs every reconciler in a fixed order, isolating phase failures.

    The ledger is written only after an apply in which no phase failed.
    """

    def __init__(
        self,
        ctx: AppContext,
        desired: DesiredState,
        reconcilers: Sequence[Reconciler[Any]],
        tasks: TaskBridge,
    ) -> None:
        self.ctx = ctx
        self.desired = desired
        self.reconcilers = list(reconcilers)
        self.tasks = tasks

    @classmethod
    def build(
        cls,
        ctx: AppContext,
        desired: DesiredState,
        *,
        store_factory: Callable[[], EnvironmentStore] | None = None,
        acl: AclApplier | None = None,
    ) -> "Orchestrator":
        """Wire the real gateways in phase order."""

        store_factory = store_factory or _memoized(lambda: WindowsEnvironmentStore(ctx.runner))
        reconcilers: list[Reconciler[Any]] = [
            ScoopReconciler(ScoopClient(ctx.runner)),
            WingetReconciler(WingetClient(ctx.runner)),
            EnvironmentReconciler(store_factory, ctx.runner),
            PathReconciler(store_factory, ctx.runner, ctx.environ),
            DotfilesReconciler(ctx),
            EncryptedFilesReconciler(
                ctx,
                age=AgeTool(ctx.runner),
                acl=acl or AclApplier(ctx.runner, ctx.environ),
                resolver_factory=lambda sources: build_resolver(ctx, sources),
            ),
        ]
        return cls(ctx, desired, reconcilers, TaskBridge(ctx))

    def run(self, *, dry_run: bool) -> RunReport:
        # a version mismatch raises here, before any phase runs
        ledger = Ledger.load(self.ctx.ledger_path)
        report = RunReport(dry_run=dry_run)

        for reconciler in self.reconcilers:
            report.phases.append(self._run_phase(reconciler, ledger, dry_run=dry_run))
        report.phases.append(self._run_tasks(ledger, dry_run=dry_run))

        if dry_run:
            return report
        if report.had_errors:
            logger.warning("Some phases failed; state file left unchanged")
            return report

        ledger.save()
        report.ledger_saved = True
        return report

    def _run_phase(self, reconciler: Reconciler[Any], ledger: Ledger, *, dry_run: bool) -> PhaseResult:
        result = PhaseResult(name=reconciler.name)
        if not reconciler.enabled(self.desired, ledger):
            result.skipped = True
            return result

        logger.debug("Phase %s", reconciler.name)
        try:
            reconciler.check_prerequisites(self.desired, ledger)
            plan = reconciler.diff(self.desired, ledger)
            result.plans = reconciler.plans(plan)
            result.changes = reconciler.apply(plan, ledger, dry_run=dry_run)
        except Exception as exc:  # noqa: BLE001
            action = error_action(exc)
            if action is ErrorAction.ABORT_RUN:
                raise
            logger.warning("Phase %s failed: %s", reconciler.name, exc)
            if action is ErrorAction.ABORT_PHASE:
                result.error = str(exc)
        return result

    def _run_tasks(self, ledger: Ledger, *, dry_run: bool) -> PhaseResult:
        result = PhaseResult(name=TASKS_PHASE)
        if not self.desired.tasks and not ledger.tasks:
            result.skipped = True
            return result

        summary = self.tasks.run(self.desired.tasks, ledger, dry_run=dry_run)
        result.plans = summary.plans
        result.changes = summary.changes
        if summary.errors:
            result.error = "; ".join(summary.errors)
        return result


def _memoized(factory: Callable[[], EnvironmentStore]) -> Callable[[], EnvironmentStore]:
    instance: list[EnvironmentStore] = []

    def get() -> EnvironmentStore:
        if not instance:
            instance.append(factory())
        return instance[0]

    return get
