"""Resolution of the age secret key from its configured sources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from ..context import KEY_ENV, KEY_FILE_ENV, VAULT_ITEM_ENV, AppContext
from ..errors import SecretResolutionFailure
from .age import SECRET_KEY_PREFIX, first_secret_key_line
from .bitwarden import BitwardenClient

logger = logging.getLogger(__name__)

VAULT_FIELD_ALIASES = ("age_secret_key", "age_key")

NO_SOURCE_MESSAGE = (
    "No age secret key is configured. Provide one of:\n"
    f"  - {KEY_ENV}: the key itself ({SECRET_KEY_PREFIX}...)\n"
    f"  - {KEY_FILE_ENV} or [age].key_file: path to a key file created by 'dotstate secret keygen'\n"
    f"  - {VAULT_ITEM_ENV} or [age].bitwarden_item: name of a Bitwarden item holding the key"
)


@dataclass(frozen=True, slots=True)
class KeySources:
    """Candidate locations of the secret key, as configured."""

    key: str | None = None
    key_file: Path | None = None
    vault_item: str | None = None

    @classmethod
    def from_environment(cls, ctx: AppContext) -> "KeySources":
        env: Mapping[str, str] = ctx.environ
        key_file = env.get(KEY_FILE_ENV)
        return cls(
            key=env.get(KEY_ENV) or None,
            key_file=ctx.expand_path(key_file, base_dir=Path.cwd()) if key_file else None,
            vault_item=env.get(VAULT_ITEM_ENV) or None,
        )

    def with_fallbacks(self, *, key_file: Path | None = None, vault_item: str | None = None) -> "KeySources":
        """Fill unset file and vault sources from document hints."""

        return KeySources(
            key=self.key,
            key_file=self.key_file or key_file,
            vault_item=self.vault_item or vault_item,
        )

    @property
    def configured(self) -> bool:
        return bool(self.key or self.key_file or self.vault_item)


class SecretResolver:
    """Resolves the key once per instance: direct value, then key file, then vault item."""

    def __init__(self, sources: KeySources, vault: BitwardenClient) -> None:
        self.sources = sources
        self.vault = vault
        self._resolved: str | None = None

    def resolve(self) -> str:
        if self._resolved is None:
            self._resolved = self._resolve()
        return self._resolved

    def _resolve(self) -> str:
        sources = self.sources
        if sources.key:
            logger.debug("Using age key from %s", KEY_ENV)
            key = sources.key.strip()
            if not key.startswith(SECRET_KEY_PREFIX):
                raise SecretResolutionFailure(f"{KEY_ENV} does not contain an age secret key")
            return key
        if sources.key_file is not None:
            logger.debug("Reading age key from %s", sources.key_file)
            return _read_key_file(sources.key_file)
        if sources.vault_item:
            logger.debug("Fetching age key from Bitwarden item '%s'", sources.vault_item)
            return self._read_vault(sources.vault_item)
        raise SecretResolutionFailure(NO_SOURCE_MESSAGE)

    def _read_vault(self, item_name: str) -> str:
        self.vault.require()
        status = self.vault.status()
        if status != "unlocked":
            raise SecretResolutionFailure(
                f"Bitwarden vault is {status}. Run 'bw unlock' and export BW_SESSION before retrying."
            )
        item = self.vault.get_item(item_name)
        if item.notes and item.notes.strip().startswith(SECRET_KEY_PREFIX):
            return item.notes.strip()
        for alias in VAULT_FIELD_ALIASES:
            value = item.fields.get(alias, "").strip()
            if value:
                return value
        raise SecretResolutionFailure(
            f"Bitwarden item '{item_name}' has no age key in its notes or in a field named "
            f"{' or '.join(repr(alias) for alias in VAULT_FIELD_ALIASES)}"
        )


def _read_key_file(path: Path) -> str:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise SecretResolutionFailure(f"Key file '{path}' does not exist") from exc
    except OSError as exc:
        raise SecretResolutionFailure(f"Key file '{path}' could not be read ({exc})") from exc
    key = first_secret_key_line(text)
    if key is None:
        raise SecretResolutionFailure(f"Key file '{path}' does not contain a line starting with {SECRET_KEY_PREFIX}")
    return key


def build_resolver(ctx: AppContext, sources: KeySources | None = None) -> SecretResolver:
    return SecretResolver(sources or KeySources.from_environment(ctx), BitwardenClient(ctx.runner))
