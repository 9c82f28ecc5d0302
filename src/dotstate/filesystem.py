"""Filesystem helpers for dotstate."""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Iterator

DIRECTORY_SENTINEL = "/"


@dataclass(frozen=True, slots=True)
class SourceItem:
    """A file or empty directory found under a dotfiles source tree."""

    relative_path: Path
    is_dir: bool

    def key_suffix(self) -> str:
        text = self.relative_path.as_posix()
        return f"{text}{DIRECTORY_SENTINEL}" if self.is_dir else text


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def hash_file(path: Path) -> str:
    """Return the hex SHA-256 digest of ``path`` contents."""

    hasher = sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_file_or_none(path: Path) -> str | None:
    if not path.is_file():
        return None
    return hash_file(path)


def iter_source_items(root: Path) -> list[SourceItem]:
    """Return files and empty directories under ``root``, sorted by relative path."""

    items: list[SourceItem] = []
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        dirnames.sort()
        if current != root and not dirnames and not filenames:
            items.append(SourceItem(current.relative_to(root), is_dir=True))
        for name in sorted(filenames):
            items.append(SourceItem((current / name).relative_to(root), is_dir=False))
    return sorted(items, key=lambda item: item.relative_path.as_posix())


def copy_file(source: Path, destination: Path) -> None:
    """Copy ``source`` over ``destination``, replacing whatever is there."""

    ensure_parent(destination)
    if destination.is_dir() and not destination.is_symlink():
        shutil.rmtree(destination)
    elif destination.is_symlink():
        destination.unlink()
    shutil.copy2(source, destination)


def remove_path(path: Path) -> None:
    """Delete ``path`` whether it is a file, directory, or symlink."""

    if not path.exists() and not path.is_symlink():
        return
    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    shutil.rmtree(path)


def remove_empty_dir(path: Path) -> bool:
    """Remove ``path`` if it is an empty directory. Returns ``True`` if removed."""

    if not path.is_dir() or path.is_symlink() or any(path.iterdir()):
        return False
    path.rmdir()
    return True


@contextmanager
def staged_replace(destination: Path) -> Iterator[Path]:
    """Yield a temporary sibling of ``destination`` that replaces it on success.

    The temporary file is removed if the body raises, so ``destination`` is
    either untouched or fully written.
    """

    ensure_parent(destination)
    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.dotstate-tmp-", dir=destination.parent)
    os.close(fd)
    temp_path = Path(temp_name)
    try:
        yield temp_path
        if destination.is_dir() and not destination.is_symlink():
            shutil.rmtree(destination)
        os.replace(temp_path, destination)
    finally:
        temp_path.unlink(missing_ok=True)
