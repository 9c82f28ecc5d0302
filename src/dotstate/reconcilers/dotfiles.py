"""Reconciliation of dotfiles copied from a source tree into the home directory."""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import DesiredState
from ..context import AppContext
from ..errors import ConfigError
from ..filesystem import DIRECTORY_SENTINEL, copy_file, hash_file, iter_source_items, remove_empty_dir, remove_path
from ..ledger import Ledger
from ..models import PlanItem, ReconciliationPlan
from .base import Reconciler

logger = logging.getLogger(__name__)


def ledger_key(ctx: AppContext, target: Path, *, is_dir: bool) -> str:
    key = ctx.to_ledger_path(target)
    return f"{key}{DIRECTORY_SENTINEL}" if is_dir else key


def diff_dotfiles(ctx: AppContext, source_root: Path, target_root: Path, tracked: set[str]) -> ReconciliationPlan:
    """Classify every source item against its target and the ledger.

    Each source item lands in exactly one of add, update, track or unchanged.
    Removal only considers ledger entries that no current source item maps to.
    """

    plan = ReconciliationPlan(domain="dotfiles")
    current: set[str] = set()

    for item in iter_source_items(source_root):
        source = source_root / item.relative_path
        target = target_root / item.relative_path
        key = ledger_key(ctx, target, is_dir=item.is_dir)
        current.add(key)

        if item.is_dir:
            if not target.exists():
                plan.to_add.append(PlanItem(key, detail=str(source)))
            elif not target.is_dir():
                plan.to_update.append(PlanItem(key, detail=str(source), reason="not a directory"))
            elif key not in tracked:
                plan.to_track.append(PlanItem(key, detail=str(source)))
            else:
                plan.unchanged += 1
            continue

        if not target.exists() and not target.is_symlink():
            plan.to_add.append(PlanItem(key, detail=str(source)))
        elif not target.is_file() or hash_file(target) != hash_file(source):
            plan.to_update.append(PlanItem(key, detail=str(source), reason="content differs"))
        elif key not in tracked:
            plan.to_track.append(PlanItem(key, detail=str(source)))
        else:
            plan.unchanged += 1

    for key in sorted(tracked - current):
        plan.to_remove.append(PlanItem(key))

    return plan


class DotfilesReconciler(Reconciler[ReconciliationPlan]):
    name = "dotfiles"

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx

    def enabled(self, desired: DesiredState, ledger: Ledger) -> bool:
        return desired.dotfiles is not None or bool(ledger.dotfiles)

    def diff(self, desired: DesiredState, ledger: Ledger) -> ReconciliationPlan:
        if desired.dotfiles is None:
            return self._orphans(ledger)
        source_root = desired.dotfiles.source
        if not source_root.is_dir():
            raise ConfigError(f"Dotfiles source '{source_root}' is not a directory")
        return diff_dotfiles(self.ctx, source_root, desired.dotfiles.target, ledger.dotfiles)

    def apply(self, plan: ReconciliationPlan, ledger: Ledger, *, dry_run: bool) -> int:
        if dry_run:
            return plan.change_count

        # a removed entry may sit where a new target needs a parent directory
        deployed = [self.ctx.from_ledger_path(item.key) for item in (*plan.to_add, *plan.to_update)]
        blocking = [
            item
            for item in plan.to_remove
            if not item.key.endswith(DIRECTORY_SENTINEL)
            and any(self.ctx.from_ledger_path(item.key) in target.parents for target in deployed)
        ]
        for item in blocking:
            self._remove(item, ledger)

        for item in (*plan.to_add, *plan.to_update):
            target = self.ctx.from_ledger_path(item.key)
            source = Path(item.detail or "")
            if item.key.endswith(DIRECTORY_SENTINEL):
                if target.exists() and not target.is_dir():
                    remove_path(target)
                target.mkdir(parents=True, exist_ok=True)
            else:
                copy_file(source, target)
            ledger.dotfiles.add(item.key)
            logger.info("Deployed %s", item.key)

        for item in plan.to_track:
            ledger.dotfiles.add(item.key)

        for item in plan.to_remove:
            if item not in blocking:
                self._remove(item, ledger)

        return plan.change_count

    def _remove(self, item: PlanItem, ledger: Ledger) -> None:
        target = self.ctx.from_ledger_path(item.key)
        if item.key.endswith(DIRECTORY_SENTINEL):
            if target.is_dir() and not remove_empty_dir(target):
                logger.warning("Keeping non-empty directory %s", item.key)
        elif target.is_file() or target.is_symlink():
            target.unlink()
        ledger.dotfiles.discard(item.key)
        logger.info("Removed %s", item.key)

    def plans(self, plan: ReconciliationPlan) -> list[ReconciliationPlan]:
        return [plan]

    @staticmethod
    def _orphans(ledger: Ledger) -> ReconciliationPlan:
        plan = ReconciliationPlan(domain="dotfiles")
        plan.to_remove.extend(PlanItem(key) for key in sorted(ledger.dotfiles))
        return plan
