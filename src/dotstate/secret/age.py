"""Wrapper around the ``age`` encryption tool."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from ..errors import ExternalCommandFailure
from ..process import CommandRunner

logger = logging.getLogger(__name__)

AGE = "age"
AGE_KEYGEN = "age-keygen"
INSTALL_HINT = "Install it with 'scoop install age' (or your platform's package manager)."
SECRET_KEY_PREFIX = "AGE-SECRET-KEY-"
_PUBLIC_KEY_RE = re.compile(r"(age1[0-9a-z]+)")


class AgeTool:
    """Runs ``age`` and ``age-keygen`` through a ``CommandRunner``."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def require(self) -> None:
        self.runner.require(AGE, INSTALL_HINT)

    def keygen(self, output: Path) -> str:
        """Generate a new identity at ``output`` and return its public key."""

        self.runner.require(AGE_KEYGEN, INSTALL_HINT)
        output.parent.mkdir(parents=True, exist_ok=True)
        result = self.runner.run([AGE_KEYGEN, "-o", str(output)])
        match = _PUBLIC_KEY_RE.search(result.output)
        if match is None:
            raise ExternalCommandFailure(
                result.args,
                result.returncode,
                result.stdout,
                result.stderr,
                message="age-keygen did not report a public key",
            )
        return match.group(1)

    def encrypt(self, source: Path, destination: Path, recipient: str) -> None:
        self.require()
        destination.parent.mkdir(parents=True, exist_ok=True)
        self.runner.run([AGE, "--encrypt", "--recipient", recipient, "--output", str(destination), str(source)])
        logger.info("Encrypted %s -> %s", source, destination)

    def decrypt(self, source: Path, destination: Path, key: str) -> None:
        """Decrypt ``source`` into ``destination`` using ``key``.

        The key only touches disk as a private temporary identity file that is
        deleted on every exit path.
        """

        self.require()
        handle = tempfile.NamedTemporaryFile("w", prefix="dotstate-key-", suffix=".txt", delete=False)
        key_path = Path(handle.name)
        try:
            with handle:
                os.chmod(key_path, 0o600)
                handle.write(key.strip() + "\n")
            self.runner.run(
                [AGE, "--decrypt", "--identity", str(key_path), "--output", str(destination), str(source)]
            )
        finally:
            key_path.unlink(missing_ok=True)
        logger.debug("Decrypted %s", source)


def first_secret_key_line(text: str) -> str | None:
    for line in text.splitlines():
        candidate = line.strip()
        if candidate.startswith(SECRET_KEY_PREFIX):
            return candidate
    return None
