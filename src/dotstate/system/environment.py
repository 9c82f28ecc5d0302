"""Persistent environment-variable stores."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod

from ..errors import PrerequisiteMissing
from ..process import ELEVATION_HELPER, CommandRunner

logger = logging.getLogger(__name__)

USER_KEY = r"Environment"
MACHINE_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
MACHINE_REG_PATH = rf"HKLM\{MACHINE_KEY}"
PATH_VARIABLE = "Path"


class EnvironmentStore(ABC):
    """Reads and writes persistent variables for the ``user`` and ``machine`` scopes."""

    @abstractmethod
    def get(self, scope: str, name: str) -> str | None:
        """Return the stored (unexpanded) value of ``name`` or ``None``."""

    @abstractmethod
    def set(self, scope: str, name: str, value: str) -> None: ...

    @abstractmethod
    def delete(self, scope: str, name: str) -> None: ...

    @abstractmethod
    def notify_change(self) -> None:
        """Tell running processes that the environment changed."""

    def get_path(self, scope: str) -> list[str]:
        raw = self.get(scope, PATH_VARIABLE) or ""
        return [entry for entry in raw.split(";") if entry]

    def set_path(self, scope: str, entries: list[str]) -> None:
        self.set(scope, PATH_VARIABLE, ";".join(entries))


class WindowsEnvironmentStore(EnvironmentStore):
    """Registry-backed store. Machine-scope writes go through the elevation helper."""

    def __init__(self, runner: CommandRunner) -> None:
        if os.name != "nt":
            raise PrerequisiteMissing("Windows registry", "Environment and PATH management is only supported on Windows.")
        import winreg

        self._winreg = winreg
        self.runner = runner

    def get(self, scope: str, name: str) -> str | None:
        winreg = self._winreg
        hive, subkey = self._location(scope)
        try:
            with winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ) as key:
                value, _kind = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        return str(value)

    def set(self, scope: str, name: str, value: str) -> None:
        winreg = self._winreg
        kind = winreg.REG_EXPAND_SZ if "%" in value else winreg.REG_SZ
        if scope == "machine":
            kind_name = "REG_EXPAND_SZ" if kind == winreg.REG_EXPAND_SZ else "REG_SZ"
            self.runner.run(
                [ELEVATION_HELPER, "reg", "add", MACHINE_REG_PATH, "/v", name, "/t", kind_name, "/d", value, "/f"]
            )
            return
        hive, subkey = self._location(scope)
        with winreg.OpenKey(hive, subkey, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, name, 0, kind, value)

    def delete(self, scope: str, name: str) -> None:
        if scope == "machine":
            self.runner.run([ELEVATION_HELPER, "reg", "delete", MACHINE_REG_PATH, "/v", name, "/f"])
            return
        winreg = self._winreg
        hive, subkey = self._location(scope)
        try:
            with winreg.OpenKey(hive, subkey, 0, winreg.KEY_SET_VALUE) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            logger.debug("Variable %s already absent from %s scope", name, scope)

    def notify_change(self) -> None:
        import ctypes
        from ctypes import wintypes

        hwnd_broadcast = 0xFFFF
        wm_settingchange = 0x001A
        smto_abortifhung = 0x0002
        result = wintypes.DWORD()
        ctypes.windll.user32.SendMessageTimeoutW(  # type: ignore[attr-defined]
            hwnd_broadcast,
            wm_settingchange,
            0,
            "Environment",
            smto_abortifhung,
            5000,
            ctypes.byref(result),
        )

    def _location(self, scope: str) -> tuple[int, str]:
        if scope == "machine":
            return self._winreg.HKEY_LOCAL_MACHINE, MACHINE_KEY
        return self._winreg.HKEY_CURRENT_USER, USER_KEY
