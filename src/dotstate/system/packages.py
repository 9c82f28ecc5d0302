"""Clients for the Scoop and winget package managers."""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import BucketRef, PackageRef
from ..errors import ExternalCommandFailure
from ..process import ELEVATION_HELPER, CommandRunner, raise_for_result

logger = logging.getLogger(__name__)

SCOOP = "scoop"
WINGET = "winget"
ADMIN_RIGHTS_MARKER = "requires admin rights"
SCOOP_ERROR_PATTERNS = ("couldn't find manifest", ADMIN_RIGHTS_MARKER, "error:")


@dataclass(slots=True)
class ScoopInventory:
    buckets: dict[str, str | None] = field(default_factory=dict)
    apps: dict[str, str | None] = field(default_factory=dict)


class ScoopClient:
    """Reads and mutates the Scoop inventory."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def require(self) -> None:
        self.runner.require(SCOOP, "Install Scoop first: see https://scoop.sh.")

    def inventory(self) -> ScoopInventory:
        result = self.runner.run([SCOOP, "export"])
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ExternalCommandFailure(
                result.args, result.returncode, result.stdout, result.stderr, message="'scoop export' returned invalid JSON"
            ) from exc

        inventory = ScoopInventory()
        for bucket in payload.get("buckets") or []:
            name = _field(bucket, "Name")
            if name:
                inventory.buckets[name] = _field(bucket, "Source")
        for app in payload.get("apps") or []:
            name = _field(app, "Name")
            if name:
                inventory.apps[name] = _field(app, "Version")
        return inventory

    def install(self, ref: PackageRef) -> None:
        """Install ``ref``, retrying once under elevation if Scoop asks for admin rights."""

        args = [SCOOP, "install", ref.spec()]
        result = self.runner.run(args, check=False)
        if ADMIN_RIGHTS_MARKER in result.output.lower():
            logger.warning("%s requires admin rights; retrying with %s", ref.name, ELEVATION_HELPER)
            self._ensure_elevation_helper()
            result = self.runner.run([ELEVATION_HELPER, *args], check=False)
        raise_for_result(result, error_patterns=SCOOP_ERROR_PATTERNS)
        logger.info("Installed %s", ref.spec())

    def uninstall(self, name: str) -> None:
        self.runner.run([SCOOP, "uninstall", name], error_patterns=SCOOP_ERROR_PATTERNS)
        logger.info("Uninstalled %s", name)

    def reinstall(self, ref: PackageRef) -> None:
        self.uninstall(ref.name)
        self.install(ref)

    def add_bucket(self, ref: BucketRef) -> None:
        args = [SCOOP, "bucket", "add", ref.name]
        if ref.url:
            args.append(ref.url)
        self.runner.run(args, error_patterns=SCOOP_ERROR_PATTERNS)
        logger.info("Added bucket %s", ref.name)

    def remove_bucket(self, name: str) -> None:
        self.runner.run([SCOOP, "bucket", "rm", name], error_patterns=SCOOP_ERROR_PATTERNS)
        logger.info("Removed bucket %s", name)

    def _ensure_elevation_helper(self) -> None:
        if self.runner.which(ELEVATION_HELPER) is not None:
            return
        logger.info("Installing %s", ELEVATION_HELPER)
        self.runner.run([SCOOP, "install", ELEVATION_HELPER], error_patterns=SCOOP_ERROR_PATTERNS)


class WingetClient:
    """Reads the winget inventory (identifiers only) and installs packages."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def require(self) -> None:
        self.runner.require(WINGET, "Install 'App Installer' from the Microsoft Store.")

    def installed_ids(self) -> set[str]:
        with tempfile.TemporaryDirectory(prefix="dotstate-winget-") as tmp:
            export_path = Path(tmp) / "export.json"
            result = self.runner.run(
                [WINGET, "export", "--output", str(export_path), "--accept-source-agreements", "--disable-interactivity"],
                check=False,
            )
            # winget exits non-zero when some packages are not available from a source
            if not export_path.is_file():
                raise_for_result(result)
                raise ExternalCommandFailure(result.args, result.returncode, result.stdout, result.stderr)
            payload = json.loads(export_path.read_text(encoding="utf-8-sig"))

        ids: set[str] = set()
        for source in payload.get("Sources") or []:
            for package in source.get("Packages") or []:
                identifier = package.get("PackageIdentifier")
                if identifier:
                    ids.add(str(identifier))
        return ids

    def install(self, ref: PackageRef) -> None:
        args = [
            WINGET,
            "install",
            "--id",
            ref.name,
            "--exact",
            "--silent",
            "--accept-package-agreements",
            "--accept-source-agreements",
            "--disable-interactivity",
        ]
        if ref.version:
            args.extend(["--version", ref.version])
        self.runner.run(args)
        logger.info("Installed %s", ref.spec())


def _field(payload: dict[str, Any], name: str) -> str | None:
    value = payload.get(name)
    if value is None:
        value = payload.get(name.lower())
    return str(value) if value not in (None, "") else None
