"""Reconciliation of PATH entries per scope and position."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Mapping

from ..config import DesiredState, PathConfig
from ..ledger import POSITIONS, SCOPES, Ledger
from ..models import PlanItem, ReconciliationPlan
from ..process import CommandRunner, require_elevation_helper
from ..system.environment import EnvironmentStore
from ..variables import expand_variables, lookup, to_platform_syntax
from .base import Reconciler

logger = logging.getLogger(__name__)

PathPlan = dict[tuple[str, str], ReconciliationPlan]


def comparable(entry: str, environ: Mapping[str, str]) -> str:
    """Fully expanded, case-folded form of a PATH entry used for equality."""

    expanded = expand_variables(entry.strip(), environ)
    if expanded == "~" or expanded.startswith(("~/", "~\\")):
        home = lookup(environ, "USERPROFILE") or lookup(environ, "HOME") or str(Path.home())
        expanded = home + expanded[1:]
    return expanded.replace("/", "\\").rstrip("\\").casefold()


def diff_path(
    desired: PathConfig,
    ledger: Ledger,
    live: Mapping[str, list[str]],
    environ: Mapping[str, str],
) -> PathPlan:
    """Plan PATH changes per scope and position.

    An entry listed in both positions belongs to the first one. Removal drops
    every equal value from the live list, so an entry that is removed from one
    position and configured in the other is re-added there.
    """

    plans: PathPlan = {}
    for scope in SCOPES:
        live_values = {comparable(entry, environ) for entry in live.get(scope, [])}
        seen: set[str] = set()
        configured: dict[str, list[tuple[str, str]]] = {}
        for position in POSITIONS:
            configured[position] = []
            for raw in desired.scope(scope).position(position):
                entry = to_platform_syntax(raw)
                value = comparable(entry, environ)
                if value in seen:
                    continue
                seen.add(value)
                configured[position].append((entry, value))

        removals: dict[str, list[str]] = {}
        for position in POSITIONS:
            wanted = {value for _, value in configured[position]}
            tracked = ledger.path_entries[scope][position]
            removals[position] = [entry for entry in sorted(tracked) if comparable(entry, environ) not in wanted]
        removed_values = {comparable(entry, environ) for entries in removals.values() for entry in entries}

        for position in POSITIONS:
            plan = ReconciliationPlan(domain=f"path ({scope} {position})")
            tracked_values = {comparable(entry, environ) for entry in ledger.path_entries[scope][position]}
            for entry, value in configured[position]:
                if value not in live_values or value in removed_values:
                    plan.to_add.append(PlanItem(entry))
                elif value not in tracked_values:
                    plan.to_track.append(PlanItem(entry))
                else:
                    plan.unchanged += 1
            plan.to_remove.extend(PlanItem(entry) for entry in removals[position])
            plans[(scope, position)] = plan
    return plans


def rebuild_path(
    current: list[str],
    *,
    prepend: list[str],
    append: list[str],
    remove: list[str],
    environ: Mapping[str, str],
) -> list[str]:
    """Drop removed entries, then put new prepend entries first and new append entries last."""

    removed = {comparable(entry, environ) for entry in remove}
    kept = [entry for entry in current if comparable(entry, environ) not in removed]
    return [*prepend, *kept, *append]


class PathReconciler(Reconciler[PathPlan]):
    name = "path"

    def __init__(
        self,
        store_factory: Callable[[], EnvironmentStore],
        runner: CommandRunner,
        environ: Mapping[str, str],
    ) -> None:
        self._store_factory = store_factory
        self.runner = runner
        self.environ = environ

    def enabled(self, desired: DesiredState, ledger: Ledger) -> bool:
        for scope in SCOPES:
            positions = desired.path.scope(scope)
            if positions.prepend or positions.append:
                return True
            if any(ledger.path_entries[scope][position] for position in POSITIONS):
                return True
        return False

    def diff(self, desired: DesiredState, ledger: Ledger) -> PathPlan:
        store = self._store_factory()
        live = {scope: store.get_path(scope) for scope in SCOPES}
        return diff_path(desired.path, ledger, live, self.environ)

    def apply(self, plan: PathPlan, ledger: Ledger, *, dry_run: bool) -> int:
        if any(plan[("machine", position)].to_add or plan[("machine", position)].to_remove for position in POSITIONS):
            require_elevation_helper(self.runner)

        changes = sum(position_plan.change_count for position_plan in plan.values())
        if dry_run:
            return changes

        store = self._store_factory()
        mutated = False
        for scope in SCOPES:
            prepend_plan = plan[(scope, "prepend")]
            append_plan = plan[(scope, "append")]
            to_remove = [item.key for item in (*prepend_plan.to_remove, *append_plan.to_remove)]
            prepend = [item.key for item in prepend_plan.to_add]
            append = [item.key for item in append_plan.to_add]

            if prepend or append or to_remove:
                entries = rebuild_path(
                    store.get_path(scope),
                    prepend=prepend,
                    append=append,
                    remove=to_remove,
                    environ=self.environ,
                )
                store.set_path(scope, entries)
                mutated = True
                logger.info("Updated %s PATH (+%d, -%d)", scope, len(prepend) + len(append), len(to_remove))

            for position, position_plan in (("prepend", prepend_plan), ("append", append_plan)):
                tracked = ledger.path_entries[scope][position]
                for item in (*position_plan.to_add, *position_plan.to_track):
                    tracked.add(item.key)
                for item in position_plan.to_remove:
                    tracked.discard(item.key)

        if mutated:
            store.notify_change()
        return changes

    def plans(self, plan: PathPlan) -> list[ReconciliationPlan]:
        return list(plan.values())
