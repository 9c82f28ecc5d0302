"""Core package for the dotstate project."""

from .cli import app, run
from .config import DesiredState, load_desired_state
from .context import AppContext
from .errors import (
    ConfigError,
    DotstateError,
    ExternalCommandFailure,
    PrerequisiteMissing,
    SecretResolutionFailure,
    StateCorrupted,
    StateVersionMismatch,
)
from .ledger import Ledger
from .models import ChangeKind, PhaseResult, PlanItem, ReconciliationPlan, RunReport
from .orchestrator import Orchestrator

__all__ = [
    "AppContext",
    "DesiredState",
    "load_desired_state",
    "ConfigError",
    "DotstateError",
    "ExternalCommandFailure",
    "PrerequisiteMissing",
    "SecretResolutionFailure",
    "StateCorrupted",
    "StateVersionMismatch",
    "Ledger",
    "ChangeKind",
    "PhaseResult",
    "PlanItem",
    "ReconciliationPlan",
    "RunReport",
    "Orchestrator",
    "app",
    "run",
]
