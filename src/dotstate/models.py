"""Shared models and enums for dotstate."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ChangeKind(str, Enum):
    """Category a reconciled item falls into."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    TRACK = "track"


class UpdateReason(str, Enum):
    """Why an encrypted file needs to be redeployed."""

    UNTRACKED = "untracked"
    SOURCE_CHANGED = "source changed"
    TARGET_MODIFIED = "target modified"


@dataclass(frozen=True, slots=True)
class PlanItem:
    """A single item scheduled for a change."""

    key: str
    reason: str | None = None
    detail: str | None = None

    def __str__(self) -> str:
        return self.key


@dataclass(slots=True)
class ReconciliationPlan:
    """Categorized result of comparing desired state to live and ledger state."""

    domain: str
    to_add: list[PlanItem] = field(default_factory=list)
    to_update: list[PlanItem] = field(default_factory=list)
    to_remove: list[PlanItem] = field(default_factory=list)
    to_track: list[PlanItem] = field(default_factory=list)
    unchanged: int = 0

    @property
    def change_count(self) -> int:
        return len(self.to_add) + len(self.to_update) + len(self.to_remove) + len(self.to_track)

    @property
    def is_empty(self) -> bool:
        return self.change_count == 0

    def keys(self, kind: ChangeKind) -> list[str]:
        return [item.key for item in self.items(kind)]

    def items(self, kind: ChangeKind) -> list[PlanItem]:
        return {
            ChangeKind.ADD: self.to_add,
            ChangeKind.UPDATE: self.to_update,
            ChangeKind.REMOVE: self.to_remove,
            ChangeKind.TRACK: self.to_track,
        }[kind]

    def entries(self) -> list[tuple[ChangeKind, PlanItem]]:
        """Every planned change paired with its category, in category order."""

        return [(kind, item) for kind in ChangeKind for item in self.items(kind)]


@dataclass(slots=True)
class PhaseResult:
    """Outcome of one orchestrator phase."""

    name: str
    plans: list[ReconciliationPlan] = field(default_factory=list)
    changes: int = 0
    error: str | None = None
    skipped: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class RunReport:
    """Collection of phase results for an apply or status run."""

    dry_run: bool
    phases: list[PhaseResult] = field(default_factory=list)
    ledger_saved: bool = False

    @property
    def had_errors(self) -> bool:
        return any(phase.failed for phase in self.phases)

    @property
    def changes(self) -> int:
        return sum(phase.changes for phase in self.phases)
