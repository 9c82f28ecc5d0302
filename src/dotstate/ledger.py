"""Persistence for the ledger of items dotstate itself manages."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import StateCorrupted, StateVersionMismatch

logger = logging.getLogger(__name__)

LEDGER_VERSION = 1
SCOPES = ("user", "machine")
POSITIONS = ("prepend", "append")


@dataclass(slots=True)
class EncryptedFileRecord:
    """Hashes recorded when an encrypted file was last deployed."""

    source_hash: str
    target_hash: str


@dataclass(slots=True)
class TaskRecord:
    items: set[str] = field(default_factory=set)


class Ledger:
    """Tracks the dotfiles, variables, PATH entries, secrets and task items dotstate created or adopted."""

    def __init__(
        self,
        path: Path,
        *,
        dotfiles: set[str],
        environment: dict[str, set[str]],
        path_entries: dict[str, dict[str, set[str]]],
        encrypted_files: dict[str, EncryptedFileRecord],
        tasks: dict[str, TaskRecord],
    ) -> None:
        self.path = path
        self.dotfiles = dotfiles
        self.environment = environment
        self.path_entries = path_entries
        self.encrypted_files = encrypted_files
        self.tasks = tasks

    @classmethod
    def empty(cls, path: Path) -> "Ledger":
        """Default contents for schema version 1."""

        return cls(
            path,
            dotfiles=set(),
            environment={scope: set() for scope in SCOPES},
            path_entries={scope: {position: set() for position in POSITIONS} for scope in SCOPES},
            encrypted_files={},
            tasks={},
        )

    @classmethod
    def load(cls, path: Path) -> "Ledger":
        """Load the ledger at ``path``.

        A missing or corrupt file yields an empty ledger. A file written by an
        unsupported schema version raises ``StateVersionMismatch``.
        """

        if not path.exists():
            return cls.empty(path)

        try:
            data = _read_payload(path)
        except StateCorrupted as exc:
            logger.warning("%s; continuing with an empty state", exc)
            return cls.empty(path)

        version = data.get("version")
        if version != LEDGER_VERSION:
            raise StateVersionMismatch(version, LEDGER_VERSION)

        ledger = cls.empty(path)
        try:
            ledger._merge(data)
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            logger.warning("State file '%s' has invalid content (%s); continuing with an empty state", path, exc)
            return cls.empty(path)
        return ledger

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n"
        fd, temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(temp_path, self.path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": LEDGER_VERSION,
            "dotfiles": sorted(self.dotfiles),
            "environment": {scope: sorted(names) for scope, names in self.environment.items()},
            "path": {
                scope: {position: sorted(entries) for position, entries in positions.items()}
                for scope, positions in self.path_entries.items()
            },
            "encrypted_files": {
                target: {"source_hash": record.source_hash, "target_hash": record.target_hash}
                for target, record in sorted(self.encrypted_files.items())
            },
            "tasks": {name: {"items": sorted(record.items)} for name, record in sorted(self.tasks.items())},
        }

    def task_items(self, name: str) -> set[str]:
        record = self.tasks.get(name)
        return set(record.items) if record else set()

    def update_task_items(self, name: str, *, added: set[str], removed: set[str]) -> None:
        record = self.tasks.setdefault(name, TaskRecord())
        record.items |= added
        record.items -= removed
        if not record.items:
            del self.tasks[name]

    def _merge(self, data: dict[str, Any]) -> None:
        self.dotfiles = {str(item) for item in data.get("dotfiles") or []}

        environment = data.get("environment") or {}
        for scope in SCOPES:
            self.environment[scope] = {str(name) for name in environment.get(scope) or []}

        path_section = data.get("path") or {}
        for scope in SCOPES:
            positions = path_section.get(scope) or {}
            for position in POSITIONS:
                self.path_entries[scope][position] = {str(entry) for entry in positions.get(position) or []}

        for target, record in (data.get("encrypted_files") or {}).items():
            self.encrypted_files[str(target)] = EncryptedFileRecord(
                source_hash=str(record["source_hash"]),
                target_hash=str(record["target_hash"]),
            )

        for name, record in (data.get("tasks") or {}).items():
            items = {str(item) for item in (record or {}).get("items") or []}
            if items:
                self.tasks[str(name)] = TaskRecord(items=items)


def _read_payload(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise StateCorrupted(f"State file '{path}' could not be read ({exc})") from exc
    if not text.strip():
        raise StateCorrupted(f"State file '{path}' is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise StateCorrupted(f"State file '{path}' is not valid JSON ({exc.msg})") from exc
    if not isinstance(data, dict):
        raise StateCorrupted(f"State file '{path}' does not contain a JSON object")
    return data
