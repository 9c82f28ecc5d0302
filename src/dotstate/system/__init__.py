"""Gateways to live machine state."""

from .acl import AclApplier
from .environment import EnvironmentStore, WindowsEnvironmentStore
from .packages import ScoopClient, ScoopInventory, WingetClient

__all__ = [
    "AclApplier",
    "EnvironmentStore",
    "WindowsEnvironmentStore",
    "ScoopClient",
    "ScoopInventory",
    "WingetClient",
]
