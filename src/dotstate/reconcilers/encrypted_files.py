"""Reconciliation of age-encrypted files decrypted into place."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Mapping

from ..config import AclSpec, DesiredState, EncryptedFileConfig
from ..context import AppContext
from ..errors import ConfigError
from ..filesystem import hash_file, hash_file_or_none, remove_path, staged_replace
from ..ledger import EncryptedFileRecord, Ledger
from ..models import PlanItem, ReconciliationPlan, UpdateReason
from ..secret import AgeTool, KeySources, SecretResolver
from ..system.acl import AclApplier
from .base import Reconciler

logger = logging.getLogger(__name__)


def diff_encrypted_files(
    ctx: AppContext,
    entries: tuple[EncryptedFileConfig, ...],
    records: Mapping[str, EncryptedFileRecord],
) -> ReconciliationPlan:
    """Classify each mapping; a manual edit of the plaintext always forces redeployment."""

    plan = ReconciliationPlan(domain="encrypted files")
    configured: set[str] = set()

    for entry in entries:
        if not entry.source.is_file():
            raise ConfigError(f"Encrypted source '{entry.source}' does not exist")
        key = ctx.to_ledger_path(entry.target)
        configured.add(key)
        source_hash = hash_file(entry.source)
        target_hash = hash_file_or_none(entry.target)
        record = records.get(key)

        if target_hash is None:
            plan.to_add.append(PlanItem(key, detail=str(entry.source)))
        elif record is None:
            plan.to_update.append(PlanItem(key, detail=str(entry.source), reason=UpdateReason.UNTRACKED.value))
        elif record.target_hash != target_hash:
            plan.to_update.append(PlanItem(key, detail=str(entry.source), reason=UpdateReason.TARGET_MODIFIED.value))
        elif record.source_hash != source_hash:
            plan.to_update.append(PlanItem(key, detail=str(entry.source), reason=UpdateReason.SOURCE_CHANGED.value))
        else:
            plan.unchanged += 1

    for key in sorted(set(records) - configured):
        plan.to_remove.append(PlanItem(key))

    return plan


class EncryptedFilesReconciler(Reconciler[ReconciliationPlan]):
    name = "encrypted_files"

    def __init__(
        self,
        ctx: AppContext,
        *,
        age: AgeTool,
        acl: AclApplier,
        resolver_factory: Callable[[KeySources], SecretResolver],
    ) -> None:
        self.ctx = ctx
        self.age = age
        self.acl = acl
        self._resolver_factory = resolver_factory
        self._sources = KeySources()
        self._acl_by_key: dict[str, AclSpec | None] = {}

    def enabled(self, desired: DesiredState, ledger: Ledger) -> bool:
        return bool(desired.encrypted_files or ledger.encrypted_files)

    def key_sources(self, desired: DesiredState) -> KeySources:
        sources = KeySources.from_environment(self.ctx)
        if desired.age is None:
            return sources
        return sources.with_fallbacks(key_file=desired.age.key_file, vault_item=desired.age.bitwarden_item)

    def diff(self, desired: DesiredState, ledger: Ledger) -> ReconciliationPlan:
        self._sources = self.key_sources(desired)
        self._acl_by_key = {self.ctx.to_ledger_path(entry.target): entry.acl for entry in desired.encrypted_files}
        return diff_encrypted_files(self.ctx, desired.encrypted_files, ledger.encrypted_files)

    def apply(self, plan: ReconciliationPlan, ledger: Ledger, *, dry_run: bool) -> int:
        deploy = [*plan.to_add, *plan.to_update]
        resolver: SecretResolver | None = None
        if deploy:
            self.age.require()
            resolver = self._resolver_factory(self._sources)
            if not (self._sources.key or self._sources.key_file) and self._sources.vault_item:
                resolver.vault.require()

        if dry_run:
            return plan.change_count

        for item in deploy:
            assert resolver is not None
            self._deploy(item, resolver.resolve(), ledger)

        for item in plan.to_remove:
            remove_path(self.ctx.from_ledger_path(item.key))
            ledger.encrypted_files.pop(item.key, None)
            logger.info("Removed %s", item.key)

        return plan.change_count

    def plans(self, plan: ReconciliationPlan) -> list[ReconciliationPlan]:
        return [plan]

    def _deploy(self, item: PlanItem, key: str, ledger: Ledger) -> None:
        source = Path(item.detail or "")
        target = self.ctx.from_ledger_path(item.key)
        with staged_replace(target) as staging:
            self.age.decrypt(source, staging, key)
        acl = self._acl_by_key.get(item.key)
        if acl is not None:
            self.acl.apply(target, acl)
        ledger.encrypted_files[item.key] = EncryptedFileRecord(
            source_hash=hash_file(source),
            target_hash=hash_file(target),
        )
        logger.info("Deployed %s (%s)", item.key, item.reason or "new")
