"""Contract implemented by every task."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..context import AppContext

MANDATORY_CAPABILITIES = ("info", "status", "apply")

TaskConfig = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class TaskInfo:
    name: str
    description: str


@dataclass(slots=True)
class TaskStatus:
    to_install: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    up_to_date: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TaskApplyResult:
    installed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


class Task(ABC):
    """A unit of desired state with its own notion of items.

    ``items`` is the set of identifiers the ledger records for this task; a
    task should only remove items found there.
    """

    name: str

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx

    @abstractmethod
    def info(self) -> TaskInfo: ...

    @abstractmethod
    def status(self, config: TaskConfig, items: set[str]) -> TaskStatus: ...

    @abstractmethod
    def apply(self, config: TaskConfig, items: set[str], *, dry_run: bool) -> TaskApplyResult: ...

    def rollback(self, config: TaskConfig, items: set[str]) -> None:
        """Undo work from an interrupted ``apply``. Optional."""

        raise NotImplementedError

    def cleanup(self) -> None:
        """Release anything held between ``status`` and ``apply``. Optional."""

    @classmethod
    def supports_rollback(cls) -> bool:
        return cls.rollback is not Task.rollback


def missing_capabilities(task_type: type) -> list[str]:
    """Names of mandatory capabilities ``task_type`` does not implement."""

    missing: list[str] = []
    for capability in MANDATORY_CAPABILITIES:
        member = getattr(task_type, capability, None)
        if member is None or not callable(member) or getattr(member, "__isabstractmethod__", False):
            missing.append(capability)
    return missing
