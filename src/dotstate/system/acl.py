"""Access-control application for deployed secrets."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from ..config import AclSpec, Rights
from ..process import CommandRunner
from ..variables import lookup

logger = logging.getLogger(__name__)

USERS_GROUP_SID = "*S-1-5-32-545"

_ICACLS_RIGHTS = {Rights.FULL: "F", Rights.READ: "R"}
_POSIX_BITS = {Rights.FULL: 0o6, Rights.READ: 0o4, Rights.NONE: 0o0}


class AclApplier:
    """Applies an ``AclSpec`` with ``icacls`` on Windows and ``chmod`` elsewhere."""

    def __init__(self, runner: CommandRunner, environ: Mapping[str, str], *, windows: bool | None = None) -> None:
        self.runner = runner
        self.environ = environ
        self.windows = os.name == "nt" if windows is None else windows

    def apply(self, path: Path, spec: AclSpec) -> None:
        if self.windows:
            self._apply_icacls(path, spec)
        else:
            self._apply_mode(path, spec)

    def _apply_icacls(self, path: Path, spec: AclSpec) -> None:
        self.runner.require("icacls")
        if spec.inherit:
            self.runner.run(["icacls", str(path), "/reset"])
            return

        args = ["icacls", str(path), "/inheritance:r"]
        user = lookup(self.environ, "USERNAME")
        if spec.owner in _ICACLS_RIGHTS and user:
            args.extend(["/grant:r", f"{user}:({_ICACLS_RIGHTS[spec.owner]})"])
        if spec.group in _ICACLS_RIGHTS:
            args.extend(["/grant:r", f"{USERS_GROUP_SID}:({_ICACLS_RIGHTS[spec.group]})"])
        self.runner.run(args)

    def _apply_mode(self, path: Path, spec: AclSpec) -> None:
        if spec.inherit and spec.owner is None and spec.group is None:
            return
        owner = _POSIX_BITS[spec.owner or Rights.FULL]
        group = _POSIX_BITS[spec.group or Rights.NONE]
        mode = (owner << 6) | (group << 3)
        os.chmod(path, mode)
        logger.debug("Set mode %o on %s", mode, path)
