"""Common contract for domain reconcilers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, Iterable, TypeVar

from ..config import DesiredState
from ..ledger import Ledger
from ..models import ReconciliationPlan

PlanT = TypeVar("PlanT")


class Reconciler(ABC, Generic[PlanT]):
    """Diffs one domain of desired state against the machine and applies the result.

    ``apply`` returns the number of changes in both preview and apply mode so
    that ``status`` and ``apply`` share one code path. The ledger is only
    mutated when ``dry_run`` is false.
    """

    name: str

    def enabled(self, desired: DesiredState, ledger: Ledger) -> bool:
        """Whether there is anything to inspect for this domain."""

        return True

    def check_prerequisites(self, desired: DesiredState, ledger: Ledger) -> None:
        """Raise ``PrerequisiteMissing`` if a tool needed to inspect the domain is absent."""

    @abstractmethod
    def diff(self, desired: DesiredState, ledger: Ledger) -> PlanT: ...

    @abstractmethod
    def apply(self, plan: PlanT, ledger: Ledger, *, dry_run: bool) -> int: ...

    @abstractmethod
    def plans(self, plan: PlanT) -> list[ReconciliationPlan]:
        """Flatten ``plan`` into per-domain plans for reporting."""


def casefold_index(names: Iterable[str]) -> dict[str, str]:
    """Map casefolded names to their original spelling."""

    return {name.casefold(): name for name in names}
