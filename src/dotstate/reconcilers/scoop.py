"""Full-sync reconciliation of Scoop buckets and apps."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import BucketRef, DesiredState, PackageRef, ScoopConfig
from ..ledger import Ledger
from ..models import PlanItem, ReconciliationPlan
from ..system.packages import ScoopClient, ScoopInventory
from .base import Reconciler, casefold_index

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "main"
BOOTSTRAP_APP = "scoop"


@dataclass(slots=True)
class ScoopPlan:
    buckets: ReconciliationPlan
    apps: ReconciliationPlan


def diff_scoop(desired: ScoopConfig, inventory: ScoopInventory) -> ScoopPlan:
    """Compare configured buckets and apps with the live inventory.

    Scoop is authoritative for its own inventory, so nothing here consults the
    ledger. The default bucket and Scoop itself are never removal candidates.
    """

    buckets = ReconciliationPlan(domain="scoop buckets")
    live_buckets = casefold_index(inventory.buckets)
    wanted_buckets = {bucket.name.casefold() for bucket in desired.buckets}
    for bucket in desired.buckets:
        if bucket.name.casefold() in live_buckets:
            buckets.unchanged += 1
        else:
            buckets.to_add.append(PlanItem(bucket.name, detail=bucket.url))
    for folded, name in sorted(live_buckets.items()):
        if folded not in wanted_buckets and folded != DEFAULT_BUCKET:
            buckets.to_remove.append(PlanItem(name))

    apps = ReconciliationPlan(domain="scoop apps")
    live_apps = {name.casefold(): (name, version) for name, version in inventory.apps.items()}
    wanted_apps = {app.name.casefold() for app in desired.apps}
    for app in desired.apps:
        live = live_apps.get(app.name.casefold())
        if live is None:
            apps.to_add.append(PlanItem(app.spec()))
        elif app.version and live[1] != app.version:
            apps.to_update.append(PlanItem(app.spec(), detail=f"installed {live[1] or 'unknown'}"))
        else:
            apps.unchanged += 1
    for folded, (name, _version) in sorted(live_apps.items()):
        if folded not in wanted_apps and folded != BOOTSTRAP_APP:
            apps.to_remove.append(PlanItem(name))

    return ScoopPlan(buckets=buckets, apps=apps)


class ScoopReconciler(Reconciler[ScoopPlan]):
    name = "scoop"

    def __init__(self, client: ScoopClient) -> None:
        self.client = client

    def enabled(self, desired: DesiredState, ledger: Ledger) -> bool:
        return desired.scoop is not None

    def check_prerequisites(self, desired: DesiredState, ledger: Ledger) -> None:
        self.client.require()

    def diff(self, desired: DesiredState, ledger: Ledger) -> ScoopPlan:
        assert desired.scoop is not None
        return diff_scoop(desired.scoop, self.client.inventory())

    def apply(self, plan: ScoopPlan, ledger: Ledger, *, dry_run: bool) -> int:
        changes = plan.buckets.change_count + plan.apps.change_count
        if dry_run:
            return changes

        # buckets first so that newly added buckets can serve app installs
        for item in plan.buckets.to_add:
            self.client.add_bucket(BucketRef(name=item.key, url=item.detail))
        for item in plan.apps.to_add:
            self.client.install(PackageRef.parse(item.key))
        for item in plan.apps.to_update:
            self.client.reinstall(PackageRef.parse(item.key))
        for item in plan.apps.to_remove:
            self.client.uninstall(item.key)
        for item in plan.buckets.to_remove:
            self.client.remove_bucket(item.key)
        return changes

    def plans(self, plan: ScoopPlan) -> list[ReconciliationPlan]:
        return [plan.buckets, plan.apps]
