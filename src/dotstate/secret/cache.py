"""Single-slot cache of the decrypted configuration document."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from ..filesystem import hash_file, remove_path, staged_replace
from .age import AgeTool
from .resolver import SecretResolver

logger = logging.getLogger(__name__)


class EncryptedConfigCache:
    """Content-addressed cache keyed by the SHA-256 of the ciphertext.

    A hit never constructs the resolver nor runs ``age``, so repeated previews
    of an unchanged document never prompt for a key or contact the vault.
    Concurrent invocations are not coordinated.
    """

    def __init__(
        self,
        plaintext_path: Path,
        hash_path: Path,
        *,
        age: AgeTool,
        resolver_factory: Callable[[], SecretResolver],
    ) -> None:
        self.plaintext_path = plaintext_path
        self.hash_path = hash_path
        self.age = age
        self._resolver_factory = resolver_factory

    def load_plaintext(self, ciphertext: Path) -> str:
        current_hash = hash_file(ciphertext)
        cached = self._cached_hash()
        if cached == current_hash and self.plaintext_path.is_file():
            logger.debug("Using cached plaintext for %s", ciphertext)
            return self.plaintext_path.read_text(encoding="utf-8")

        logger.info("Decrypting %s", ciphertext)
        key = self._resolver_factory().resolve()
        with staged_replace(self.plaintext_path) as staging:
            self.age.decrypt(ciphertext, staging, key)
        self.hash_path.write_text(current_hash + "\n", encoding="utf-8")
        return self.plaintext_path.read_text(encoding="utf-8")

    def clear(self) -> bool:
        """Delete the cached plaintext and sidecar; returns whether anything was removed."""

        removed = False
        for path in (self.plaintext_path, self.hash_path):
            if path.exists() or path.is_symlink():
                remove_path(path)
                removed = True
        return removed

    def _cached_hash(self) -> str | None:
        if not self.hash_path.is_file():
            return None
        return self.hash_path.read_text(encoding="utf-8").strip() or None
