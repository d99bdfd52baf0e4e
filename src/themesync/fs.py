"""Recursive filesystem helpers used by snapshots and the deployer.

Every helper works against a ``FileSystem`` so the copy / delete / swap
logic can be exercised against an in-memory double. Helpers raise
``OSError``; callers translate failures into their own error kinds.
"""

from __future__ import annotations

import secrets
import shutil
from pathlib import Path
from typing import Protocol

from themesync.logging import get_logger

log = get_logger("themesync.fs")

SIZE_UNITS = ("KB", "MB", "GB")


class FileSystem(Protocol):
    """The filesystem operations the helpers rely on."""

    def exists(self, path: Path) -> bool: ...

    def is_dir(self, path: Path) -> bool: ...

    def list_dir(self, path: Path) -> list[Path]: ...

    def make_dir(self, path: Path) -> None: ...

    def copy_file(self, src: Path, dst: Path) -> None: ...

    def remove_file(self, path: Path) -> None: ...

    def remove_dir(self, path: Path) -> None: ...

    def rename(self, src: Path, dst: Path) -> None: ...

    def file_size(self, path: Path) -> int: ...

    def mtime_ns(self, path: Path) -> int: ...

    def write_text(self, path: Path, text: str) -> None: ...


class LocalFileSystem:
    """``FileSystem`` backed by the local disk."""

    def exists(self, path: Path) -> bool:
        return path.exists() or path.is_symlink()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir() and not path.is_symlink()

    def list_dir(self, path: Path) -> list[Path]:
        return sorted(path.iterdir())

    def make_dir(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def copy_file(self, src: Path, dst: Path) -> None:
        shutil.copy2(src, dst, follow_symlinks=False)

    def remove_file(self, path: Path) -> None:
        path.unlink()

    def remove_dir(self, path: Path) -> None:
        path.rmdir()

    def rename(self, src: Path, dst: Path) -> None:
        src.rename(dst)

    def file_size(self, path: Path) -> int:
        return path.lstat().st_size

    def mtime_ns(self, path: Path) -> int:
        return path.stat().st_mtime_ns

    def write_text(self, path: Path, text: str) -> None:
        path.write_text(text, encoding="utf-8")


def copy_tree(fs: FileSystem, source: Path, destination: Path) -> None:
    """Copy the contents of *source* into *destination*, creating it if needed."""
    if not fs.is_dir(source):
        raise NotADirectoryError(f"not a directory: {source}")
    fs.make_dir(destination)
    for entry in fs.list_dir(source):
        target = destination / entry.name
        if fs.is_dir(entry):
            copy_tree(fs, entry, target)
        else:
            fs.copy_file(entry, target)


def clear_directory(fs: FileSystem, path: Path) -> None:
    """Delete everything inside *path* but keep the directory itself."""
    if not fs.is_dir(path):
        return
    for entry in fs.list_dir(path):
        if fs.is_dir(entry):
            delete_tree(fs, entry)
        else:
            fs.remove_file(entry)


def delete_tree(fs: FileSystem, path: Path) -> None:
    """Delete *path* and everything below it."""
    if not fs.is_dir(path):
        if fs.exists(path):
            fs.remove_file(path)
        return
    clear_directory(fs, path)
    fs.remove_dir(path)


def directory_size(fs: FileSystem, path: Path) -> int:
    """Sum of regular file sizes below *path*."""
    if not fs.is_dir(path):
        return 0
    total = 0
    for entry in fs.list_dir(path):
        if fs.is_dir(entry):
            total += directory_size(fs, entry)
        else:
            total += fs.file_size(entry)
    return total


def format_size(num_bytes: int, decimals: int = 2) -> str:
    """Human-readable size using 1024 steps (B, KB, MB, GB)."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    value = float(num_bytes)
    unit = SIZE_UNITS[0]
    for unit in SIZE_UNITS:
        value /= 1024
        if value < 1024:
            break
    return f"{value:.{decimals}f} {unit}"


def _sibling(target: Path, label: str) -> Path:
    return target.parent / f".{target.name}.{label}-{secrets.token_hex(4)}"


def stage_copy(fs: FileSystem, source: Path, target: Path) -> Path:
    """Copy *source* into a fresh staging directory next to *target*.

    The staging directory is removed again if the copy fails.
    """
    staging = _sibling(target, "staging")
    try:
        copy_tree(fs, source, staging)
    except OSError:
        _discard(fs, staging)
        raise
    return staging


def replace_directory(fs: FileSystem, staging: Path, target: Path) -> None:
    """Swap a staged directory into place of *target*.

    *target* is moved aside, the staged copy renamed over it, and the old
    tree removed. If the rename fails the old directory is moved back.
    """
    previous: Path | None = None
    if fs.exists(target):
        previous = _sibling(target, "old")
        fs.rename(target, previous)
    try:
        fs.rename(staging, target)
    except OSError:
        if previous is not None:
            fs.rename(previous, target)
        raise
    if previous is not None:
        _discard(fs, previous)


def _discard(fs: FileSystem, path: Path) -> None:
    try:
        delete_tree(fs, path)
    except OSError as exc:
        log.warning("fs_cleanup_failed", path=str(path), error=str(exc))
