"""Runtime context shared by every dotstate component."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .process import CommandRunner
from .variables import expand_variables

CONFIG_FILENAME = "config.toml"
ENCRYPTED_SUFFIX = ".age"
LEDGER_FILENAME = "state.json"

HOME_ENV = "DOTSTATE_HOME"
KEY_ENV = "DOTSTATE_AGE_KEY"
KEY_FILE_ENV = "DOTSTATE_AGE_KEY_FILE"
VAULT_ITEM_ENV = "DOTSTATE_BW_ITEM"


@dataclass(frozen=True)
class AppContext:
    """Paths, environment and external-command access for one invocation."""

    config_dir: Path
    home: Path
    environ: Mapping[str, str] = field(default_factory=dict)
    runner: CommandRunner = field(default_factory=CommandRunner)

    @classmethod
    def from_environment(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        runner: CommandRunner | None = None,
    ) -> "AppContext":
        env = dict(os.environ if environ is None else environ)
        home = Path(env.get("USERPROFILE") or env.get("HOME") or Path.home())
        raw_dir = env.get(HOME_ENV)
        if raw_dir:
            config_dir = Path(os.path.expandvars(raw_dir)).expanduser()
        else:
            config_dir = home / ".config" / "dotstate"
        return cls(
            config_dir=config_dir.resolve(strict=False),
            home=home,
            environ=env,
            runner=runner or CommandRunner(),
        )

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    @property
    def encrypted_config_path(self) -> Path:
        return self.config_dir / f"{CONFIG_FILENAME}{ENCRYPTED_SUFFIX}"

    @property
    def ledger_path(self) -> Path:
        return self.config_dir / LEDGER_FILENAME

    @property
    def cache_dir(self) -> Path:
        return self.config_dir / "cache"

    @property
    def cached_config_path(self) -> Path:
        return self.cache_dir / CONFIG_FILENAME

    @property
    def cached_config_hash_path(self) -> Path:
        return self.cache_dir / f"{CONFIG_FILENAME}.sha256"

    def expand_path(self, raw: str | os.PathLike[str], *, base_dir: Path | None = None) -> Path:
        """Expand ``~`` and environment variables, anchoring relative paths at ``base_dir``."""

        text = expand_variables(str(raw), self.environ)
        if text == "~" or text.startswith(("~/", "~\\")):
            text = str(self.home) + text[1:]
        candidate = Path(text)
        if candidate.is_absolute():
            return candidate
        return (base_dir or self.config_dir) / candidate

    def to_ledger_path(self, path: Path) -> str:
        """Return the ``~/``-relative POSIX form of ``path`` used as a ledger key."""

        try:
            relative = path.relative_to(self.home)
        except ValueError:
            return path.as_posix()
        if not relative.parts:
            return "~"
        return f"~/{relative.as_posix()}"

    def from_ledger_path(self, key: str) -> Path:
        text = key.rstrip("/")
        if text == "~":
            return self.home
        if text.startswith("~/"):
            return self.home / text[2:]
        return Path(text)
