"""Error taxonomy for dotstate and how the orchestrator reacts to each kind."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class DotstateError(RuntimeError):
    """Base class for every error dotstate raises on purpose."""


class ConfigError(DotstateError):
    """Raised when the desired-state document cannot be located, parsed, or validated."""


class PrerequisiteMissing(DotstateError):
    """Raised when an external tool required by a phase is not installed."""

    def __init__(self, tool: str, hint: str | None = None) -> None:
        self.tool = tool
        self.hint = hint
        message = f"Required tool '{tool}' was not found"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)


class StateVersionMismatch(DotstateError):
    """Raised when the ledger file declares a schema version this build does not support."""

    def __init__(self, found: object, supported: int) -> None:
        self.found = found
        self.supported = supported
        super().__init__(
            f"State file schema version {found!r} is not supported (expected {supported}). "
            "Upgrade dotstate or move the state file aside."
        )


class StateCorrupted(DotstateError):
    """Raised internally when the ledger file is unreadable; recovered with an empty ledger."""


class SecretResolutionFailure(DotstateError):
    """Raised when no usable age secret key could be obtained."""


class ExternalCommandFailure(DotstateError):
    """Raised when an external command exits non-zero or reports an error."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip().splitlines()
        summary = message or f"Command '{' '.join(self.args_list)}' failed with exit code {returncode}"
        if detail:
            summary = f"{summary}: {detail[-1]}"
        super().__init__(summary)


class ErrorAction(str, Enum):
    """What the orchestrator does when a phase raises."""

    ABORT_PHASE = "abort_phase"
    ABORT_RUN = "abort_run"
    WARN = "warn"


def error_action(exc: BaseException) -> ErrorAction:
    """Map an exception raised inside a phase to the orchestrator's reaction."""

    if isinstance(exc, StateVersionMismatch):
        return ErrorAction.ABORT_RUN
    if isinstance(exc, StateCorrupted):
        return ErrorAction.WARN
    return ErrorAction.ABORT_PHASE
