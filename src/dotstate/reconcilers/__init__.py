"""Per-domain diff engines."""

from .base import Reconciler
from .dotfiles import DotfilesReconciler, diff_dotfiles
from .encrypted_files import EncryptedFilesReconciler, diff_encrypted_files
from .environment import EnvironmentReconciler, diff_environment
from .path import PathReconciler, diff_path, rebuild_path
from .scoop import BOOTSTRAP_APP, DEFAULT_BUCKET, ScoopPlan, ScoopReconciler, diff_scoop
from .winget import WingetReconciler, diff_winget

__all__ = [
    "Reconciler",
    "DotfilesReconciler",
    "diff_dotfiles",
    "EncryptedFilesReconciler",
    "diff_encrypted_files",
    "EnvironmentReconciler",
    "diff_environment",
    "PathReconciler",
    "diff_path",
    "rebuild_path",
    "BOOTSTRAP_APP",
    "DEFAULT_BUCKET",
    "ScoopPlan",
    "ScoopReconciler",
    "diff_scoop",
    "WingetReconciler",
    "diff_winget",
]
