"""Additive reconciliation of winget packages.

Packages outside the configured set are never removed: many system packages
are installed through winget without the user's involvement. ``winget export``
does not report installed versions, so a pinned version is only honoured at
install time and later drift cannot be detected.
"""

from __future__ import annotations

from ..config import DesiredState, PackageRef, WingetConfig
from ..ledger import Ledger
from ..models import PlanItem, ReconciliationPlan
from ..system.packages import WingetClient
from .base import Reconciler


def diff_winget(desired: WingetConfig, installed_ids: set[str]) -> ReconciliationPlan:
    plan = ReconciliationPlan(domain="winget apps")
    installed = {identifier.casefold() for identifier in installed_ids}
    for app in desired.apps:
        if app.name.casefold() in installed:
            plan.unchanged += 1
        else:
            plan.to_add.append(PlanItem(app.spec()))
    return plan


class WingetReconciler(Reconciler[ReconciliationPlan]):
    name = "winget"

    def __init__(self, client: WingetClient) -> None:
        self.client = client

    def enabled(self, desired: DesiredState, ledger: Ledger) -> bool:
        return desired.winget is not None

    def check_prerequisites(self, desired: DesiredState, ledger: Ledger) -> None:
        self.client.require()

    def diff(self, desired: DesiredState, ledger: Ledger) -> ReconciliationPlan:
        assert desired.winget is not None
        return diff_winget(desired.winget, self.client.installed_ids())

    def apply(self, plan: ReconciliationPlan, ledger: Ledger, *, dry_run: bool) -> int:
        if not dry_run:
            for item in plan.to_add:
                self.client.install(PackageRef.parse(item.key))
        return plan.change_count

    def plans(self, plan: ReconciliationPlan) -> list[ReconciliationPlan]:
        return [plan]
