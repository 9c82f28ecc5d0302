"""Minimal Bitwarden CLI client used to fetch the age key."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from ..errors import ExternalCommandFailure, SecretResolutionFailure
from ..process import CommandRunner

BW = "bw"


@dataclass(frozen=True, slots=True)
class VaultItem:
    name: str
    notes: str | None = None
    fields: dict[str, str] = field(default_factory=dict)


class BitwardenClient:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def require(self) -> None:
        self.runner.require(BW, "Install the Bitwarden CLI with 'scoop install bitwarden-cli'.")

    def status(self) -> str:
        result = self.runner.run([BW, "status"])
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ExternalCommandFailure(
                result.args,
                result.returncode,
                result.stdout,
                result.stderr,
                message="'bw status' returned unexpected output",
            ) from exc
        return str(payload.get("status", "unknown"))

    def get_item(self, name: str) -> VaultItem:
        result = self.runner.run([BW, "get", "item", name], check=False)
        if not result.ok:
            raise SecretResolutionFailure(f"Bitwarden item '{name}' could not be read: {result.stderr.strip()}")
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise SecretResolutionFailure(f"Bitwarden item '{name}' returned unexpected output") from exc

        fields = {
            str(entry.get("name")): str(entry.get("value") or "")
            for entry in payload.get("fields") or []
            if entry.get("name")
        }
        return VaultItem(name=str(payload.get("name", name)), notes=payload.get("notes"), fields=fields)
