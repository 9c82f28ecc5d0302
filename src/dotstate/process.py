"""External command execution."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

from .errors import ExternalCommandFailure, PrerequisiteMissing

logger = logging.getLogger(__name__)

ELEVATION_HELPER = "gsudo"


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of an external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


class CommandRunner:
    """Runs external programs synchronously and captures their output."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env = dict(env) if env is not None else None

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input_text: str | None = None,
        error_patterns: Sequence[str] = (),
    ) -> CommandResult:
        """Run ``args`` and return the captured result.

        Raises ``ExternalCommandFailure`` when ``check`` is set and the process
        exits non-zero or its output contains one of ``error_patterns``.
        """

        logger.debug("Running %s", " ".join(args))
        executable = self.which(args[0]) or args[0]
        try:
            completed = subprocess.run(
                [executable, *args[1:]],
                input=input_text,
                capture_output=True,
                text=True,
                env=self._env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise PrerequisiteMissing(args[0]) from exc

        result = CommandResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check:
            raise_for_result(result, error_patterns=error_patterns)
        return result

    def require(self, name: str, hint: str | None = None) -> str:
        """Return the resolved path of ``name`` or raise ``PrerequisiteMissing``."""

        path = self.which(name)
        if path is None:
            raise PrerequisiteMissing(name, hint)
        return path


def raise_for_result(result: CommandResult, *, error_patterns: Sequence[str] = ()) -> None:
    if not result.ok:
        raise ExternalCommandFailure(result.args, result.returncode, result.stdout, result.stderr)
    lowered = result.output.lower()
    for pattern in error_patterns:
        if pattern.lower() in lowered:
            raise ExternalCommandFailure(
                result.args,
                result.returncode,
                result.stdout,
                result.stderr,
                message=f"Command '{' '.join(result.args)}' reported an error ({pattern})",
            )


def require_elevation_helper(runner: CommandRunner) -> str:
    return runner.require(
        ELEVATION_HELPER,
        "Machine-scope changes need an elevation helper: run 'scoop install gsudo'.",
    )
