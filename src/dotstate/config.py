"""Desired-state loading and normalization for dotstate."""

from __future__ import annotations

import logging
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .context import AppContext
from .errors import ConfigError
from .secret import AgeTool, EncryptedConfigCache, KeySources, build_resolver

logger = logging.getLogger(__name__)


class PackageRef(BaseModel):
    """A package name with an optional pinned version."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str | None = None

    @classmethod
    def parse(cls, raw: Any) -> "PackageRef":
        if isinstance(raw, PackageRef):
            return raw
        if isinstance(raw, str):
            name, sep, version = raw.strip().partition("@")
            if not name:
                raise ValueError(f"invalid package reference {raw!r}")
            return cls(name=name, version=version if sep and version else None)
        if isinstance(raw, Mapping):
            if "name" in raw:
                version = raw.get("version")
                return cls(name=str(raw["name"]), version=str(version) if version is not None else None)
            if len(raw) == 1:
                ((name, version),) = raw.items()
                return cls(name=str(name), version=str(version) if version not in (None, "") else None)
        raise ValueError(f"invalid package reference {raw!r}")

    def spec(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


class BucketRef(BaseModel):
    """A Scoop bucket name with an optional repository URL."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str | None = None

    @classmethod
    def parse(cls, raw: Any) -> "BucketRef":
        if isinstance(raw, BucketRef):
            return raw
        if isinstance(raw, str) and raw.strip():
            return cls(name=raw.strip())
        if isinstance(raw, Mapping):
            if "name" in raw:
                url = raw.get("url")
                return cls(name=str(raw["name"]), url=str(url) if url else None)
            if len(raw) == 1:
                ((name, url),) = raw.items()
                return cls(name=str(name), url=str(url) if url else None)
        raise ValueError(f"invalid bucket reference {raw!r}")


def _parse_packages(value: Any) -> tuple[PackageRef, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValueError("expected a list of packages")
    return tuple(PackageRef.parse(item) for item in value)


class ScoopConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    buckets: tuple[BucketRef, ...] = ()
    apps: tuple[PackageRef, ...] = ()

    @field_validator("buckets", mode="before")
    @classmethod
    def _buckets(cls, value: Any) -> tuple[BucketRef, ...]:
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            raise ValueError("expected a list of buckets")
        return tuple(BucketRef.parse(item) for item in value)

    @field_validator("apps", mode="before")
    @classmethod
    def _apps(cls, value: Any) -> tuple[PackageRef, ...]:
        return _parse_packages(value)


class WingetConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    apps: tuple[PackageRef, ...] = ()

    @field_validator("apps", mode="before")
    @classmethod
    def _apps(cls, value: Any) -> tuple[PackageRef, ...]:
        return _parse_packages(value)


class DotfilesConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    source: Path
    target: Path = Path("~")


class ScopedVariables(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    user: Dict[str, str] = Field(default_factory=dict)
    machine: Dict[str, str] = Field(default_factory=dict)

    @field_validator("user", "machine", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("expected a table of NAME = value")
        result: dict[str, str] = {}
        for name, raw in value.items():
            if isinstance(raw, bool):
                result[str(name)] = "1" if raw else "0"
            elif isinstance(raw, (str, int, float)):
                result[str(name)] = str(raw)
            else:
                raise ValueError(f"variable '{name}' must be a scalar")
        return result

    def scope(self, name: str) -> dict[str, str]:
        return self.user if name == "user" else self.machine


class PathPositions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    prepend: tuple[str, ...] = ()
    append: tuple[str, ...] = ()

    def position(self, name: str) -> tuple[str, ...]:
        return self.prepend if name == "prepend" else self.append


class PathConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    user: PathPositions = Field(default_factory=PathPositions)
    machine: PathPositions = Field(default_factory=PathPositions)

    def scope(self, name: str) -> PathPositions:
        return self.user if name == "user" else self.machine


class AgeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    public_key: str | None = None
    key_file: Path | None = None
    bitwarden_item: str | None = None


class AclPreset(str, Enum):
    OWNER_FULL = "owner-full"
    OWNER_READ = "owner-read"
    INHERIT = "inherit"


class Rights(str, Enum):
    FULL = "full"
    READ = "read"
    NONE = "none"


class AclSpec(BaseModel):
    """Access-control setting applied to a deployed secret."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    owner: Rights | None = Rights.FULL
    group: Rights | None = Rights.NONE
    inherit: bool = False

    @classmethod
    def from_preset(cls, preset: AclPreset) -> "AclSpec":
        if preset is AclPreset.OWNER_FULL:
            return cls(owner=Rights.FULL, group=Rights.NONE, inherit=False)
        if preset is AclPreset.OWNER_READ:
            return cls(owner=Rights.READ, group=Rights.NONE, inherit=False)
        return cls(owner=None, group=None, inherit=True)


class EncryptedFileConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    source: Path
    target: Path
    acl: AclSpec | None = None

    @field_validator("acl", mode="before")
    @classmethod
    def _acl(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return AclSpec.from_preset(AclPreset(value))
            except ValueError as exc:
                presets = ", ".join(preset.value for preset in AclPreset)
                raise ValueError(f"unknown ACL preset '{value}' (expected one of: {presets})") from exc
        return value


class DesiredState(BaseModel):
    """Fully normalized desired state for one run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    scoop: ScoopConfig | None = None
    winget: WingetConfig | None = None
    dotfiles: DotfilesConfig | None = None
    environment: ScopedVariables = Field(default_factory=ScopedVariables)
    path: PathConfig = Field(default_factory=PathConfig)
    age: AgeConfig | None = None
    encrypted_files: tuple[EncryptedFileConfig, ...] = ()
    tasks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def resolve_paths(self, ctx: AppContext, *, base_dir: Path) -> "DesiredState":
        """Return a copy whose filesystem paths are absolute."""

        updates: dict[str, Any] = {}
        if self.dotfiles is not None:
            updates["dotfiles"] = self.dotfiles.model_copy(
                update={
                    "source": ctx.expand_path(self.dotfiles.source, base_dir=base_dir),
                    "target": ctx.expand_path(self.dotfiles.target, base_dir=base_dir),
                }
            )
        if self.age is not None and self.age.key_file is not None:
            updates["age"] = self.age.model_copy(
                update={"key_file": ctx.expand_path(self.age.key_file, base_dir=base_dir)}
            )
        if self.encrypted_files:
            updates["encrypted_files"] = tuple(
                entry.model_copy(
                    update={
                        "source": ctx.expand_path(entry.source, base_dir=base_dir),
                        "target": ctx.expand_path(entry.target, base_dir=base_dir),
                    }
                )
                for entry in self.encrypted_files
            )
        return self.model_copy(update=updates) if updates else self


def normalize(data: Mapping[str, Any], ctx: AppContext, *, base_dir: Path, origin: str = "configuration") -> DesiredState:
    """Validate a parsed document tree and return the canonical ``DesiredState``."""

    try:
        state = DesiredState.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigError(f"Invalid {origin}:\n{exc}") from exc
    return state.resolve_paths(ctx, base_dir=base_dir)


def parse_document(text: str, *, origin: str) -> dict[str, Any]:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Could not parse {origin}: {exc}") from exc


def config_cache(ctx: AppContext) -> EncryptedConfigCache:
    return EncryptedConfigCache(
        ctx.cached_config_path,
        ctx.cached_config_hash_path,
        age=AgeTool(ctx.runner),
        # The document cannot name its own key source before it is decrypted.
        resolver_factory=lambda: build_resolver(ctx, KeySources.from_environment(ctx)),
    )


def load_desired_state(ctx: AppContext) -> DesiredState:
    """Load the plaintext document, or the encrypted one through the cache."""

    plaintext = ctx.config_path
    encrypted = ctx.encrypted_config_path

    if plaintext.is_file():
        if encrypted.is_file():
            logger.warning("Both '%s' and '%s' exist; using the plaintext file", plaintext.name, encrypted.name)
        text = plaintext.read_text(encoding="utf-8")
        origin = str(plaintext)
    elif encrypted.is_file():
        text = config_cache(ctx).load_plaintext(encrypted)
        origin = str(encrypted)
    else:
        raise ConfigError(
            f"No configuration found: expected '{plaintext}' or '{encrypted}'. "
            "Run 'dotstate init' to create one."
        )

    return normalize(parse_document(text, origin=origin), ctx, base_dir=ctx.config_dir, origin=origin)


def read_plaintext_age_hints(ctx: AppContext) -> AgeConfig | None:
    """Return the ``[age]`` section of the plaintext document, if one exists and parses."""

    if not ctx.config_path.is_file():
        return None
    try:
        data = parse_document(ctx.config_path.read_text(encoding="utf-8"), origin=str(ctx.config_path))
        section = AgeConfig.model_validate(data.get("age") or {})
    except (ConfigError, ValidationError) as exc:
        logger.warning("Ignoring key hints from '%s': %s", ctx.config_path, exc)
        return None
    if section.key_file is not None:
        section = section.model_copy(update={"key_file": ctx.expand_path(section.key_file)})
    return section
