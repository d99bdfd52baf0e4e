"""Point-in-time copies of the live theme directory.

Snapshots live as plain directories under a protected root, named
``<artifact_id>_<YYYY-MM-DD_HH-MM-SS>``. A snapshot is taken before every
update and the oldest beyond the retention count are removed afterwards.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from themesync.errors import ErrorKind, Result
from themesync.fs import (
    FileSystem,
    LocalFileSystem,
    copy_tree,
    delete_tree,
    directory_size,
    format_size,
    replace_directory,
    stage_copy,
)
from themesync.logging import get_logger

log = get_logger("themesync.snapshots")

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Sentinel files that stop the snapshot root from being served.
PROTECTION_FILES = {
    ".htaccess": "Deny from all\n",
    "index.php": "<?php\n// Silence is golden.\n",
}

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
SNAPSHOT_SUFFIX_PATTERN = r"_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}(-\d+)?$"


@dataclass
class Snapshot:
    """A stored copy of the theme directory."""

    name: str
    path: Path
    created_at: datetime
    size_bytes: int

    @property
    def size_display(self) -> str:
        return format_size(self.size_bytes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
            "size": self.size_display,
        }


def is_safe_name(name: str) -> bool:
    return bool(name) and ".." not in name and _SAFE_NAME_RE.match(name) is not None


def _snapshot_name_pattern(artifact_id: str) -> re.Pattern[str]:
    return re.compile("^" + re.escape(artifact_id) + SNAPSHOT_SUFFIX_PATTERN)


class SnapshotStore:
    """Creates, lists, restores and deletes snapshots of one artifact directory."""

    def __init__(
        self,
        root: Path,
        artifact_dir: Path,
        retention: int | Callable[[], int] = 3,
        fs: FileSystem | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root = Path(root)
        self._artifact_dir = Path(artifact_dir)
        self._retention = retention
        self._fs: FileSystem = fs or LocalFileSystem()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def root(self) -> Path:
        return self._root

    @property
    def artifact_dir(self) -> Path:
        return self._artifact_dir

    @property
    def artifact_id(self) -> str:
        return self._artifact_dir.name

    @property
    def retention(self) -> int:
        value = self._retention() if callable(self._retention) else self._retention
        return max(1, int(value))

    # ------------------------------------------------------------------
    # Root management
    # ------------------------------------------------------------------

    def ensure_root(self) -> Result[None]:
        """Create the snapshot root and its protection files."""
        try:
            self._fs.make_dir(self._root)
            for filename, content in PROTECTION_FILES.items():
                path = self._root / filename
                if not self._fs.exists(path):
                    self._fs.write_text(path, content)
        except OSError as exc:
            log.error("snapshot_root_unavailable", root=str(self._root), error=str(exc))
            return Result.failure(
                ErrorKind.SNAPSHOT_FAILED,
                "Failed to create snapshot directory.",
                detail=str(exc),
            )
        return Result.success(None)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, source_dir: Path | None = None) -> Result[Snapshot]:
        """Copy *source_dir* (default: the artifact directory) into a new snapshot."""
        source = Path(source_dir) if source_dir is not None else self._artifact_dir
        prepared = self.ensure_root()
        if not prepared.ok:
            return Result.from_error(prepared.error)  # type: ignore[arg-type]

        if not self._fs.is_dir(source):
            return Result.failure(
                ErrorKind.SNAPSHOT_FAILED,
                "Active theme directory not found.",
                detail=str(source),
            )

        name = self._next_name()
        destination = self._root / name
        try:
            copy_tree(self._fs, source, destination)
        except OSError as exc:
            log.error("snapshot_copy_failed", name=name, error=str(exc))
            try:
                delete_tree(self._fs, destination)
            except OSError:
                log.warning("snapshot_partial_cleanup_failed", name=name)
            return Result.failure(
                ErrorKind.SNAPSHOT_FAILED,
                "Failed to create theme snapshot.",
                detail=str(exc),
            )

        snapshot = self._describe(destination)
        log.info("snapshot_created", name=name, size=snapshot.size_display)
        self.prune()
        return Result.success(snapshot)

    def list(self, artifact_id: str | None = None) -> list[Snapshot]:
        """Snapshots under the root, newest first, optionally for one artifact."""
        if not self._fs.is_dir(self._root):
            return []

        found: list[tuple[int, str, Path]] = []
        for entry in self._fs.list_dir(self._root):
            if not self._fs.is_dir(entry):
                continue
            if artifact_id and not _snapshot_name_pattern(artifact_id).match(entry.name):
                continue
            found.append((self._fs.mtime_ns(entry), entry.name, entry))

        found.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [self._describe(path, mtime_ns) for mtime_ns, _, path in found]

    def restore(self, name: str) -> Result[Snapshot]:
        """Replace the artifact directory with the snapshot called *name*."""
        located = self._locate(name)
        if not located.ok:
            return Result.from_error(located.error)  # type: ignore[arg-type]
        snapshot_path = located.unwrap()

        try:
            staging = stage_copy(self._fs, snapshot_path, self._artifact_dir)
        except OSError as exc:
            log.error("snapshot_restore_copy_failed", name=name, error=str(exc))
            return Result.failure(
                ErrorKind.RESTORE_FAILED,
                "Failed to restore theme from snapshot.",
                detail=str(exc),
            )

        try:
            replace_directory(self._fs, staging, self._artifact_dir)
        except OSError as exc:
            log.error("snapshot_restore_swap_failed", name=name, error=str(exc))
            try:
                delete_tree(self._fs, staging)
            except OSError:
                log.warning("snapshot_staging_cleanup_failed", path=str(staging))
            return Result.failure(
                ErrorKind.DELETE_FAILED,
                "Failed to remove current theme files.",
                detail=str(exc),
            )

        log.info("snapshot_restored", name=name)
        return Result.success(self._describe(snapshot_path))

    def delete(self, name: str) -> Result[None]:
        located = self._locate(name)
        if not located.ok:
            return Result.from_error(located.error)  # type: ignore[arg-type]

        try:
            delete_tree(self._fs, located.unwrap())
        except OSError as exc:
            log.error("snapshot_delete_failed", name=name, error=str(exc))
            return Result.failure(
                ErrorKind.DELETE_FAILED,
                "Failed to delete snapshot.",
                detail=str(exc),
            )
        log.info("snapshot_deleted", name=name)
        return Result.success(None)

    def prune(self, artifact_id: str | None = None) -> list[str]:
        """Delete the oldest snapshots beyond the retention count."""
        keep = self.retention
        snapshots = self.list(artifact_id or self.artifact_id)
        removed: list[str] = []
        for snapshot in snapshots[keep:]:
            try:
                delete_tree(self._fs, snapshot.path)
                removed.append(snapshot.name)
            except OSError as exc:
                log.warning("snapshot_prune_failed", name=snapshot.name, error=str(exc))
        if removed:
            log.info("snapshots_pruned", removed=removed, keep=keep)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_name(self) -> str:
        base = f"{self.artifact_id}_{self._clock().strftime(TIMESTAMP_FORMAT)}"
        name = base
        counter = 1
        while self._fs.exists(self._root / name):
            name = f"{base}-{counter}"
            counter += 1
        return name

    def _locate(self, name: str) -> Result[Path]:
        if not is_safe_name(name):
            return Result.failure(ErrorKind.NOT_FOUND, "Invalid snapshot name.", detail=name)
        path = self._root / name
        if path.parent != self._root or not self._fs.is_dir(path):
            return Result.failure(ErrorKind.NOT_FOUND, "Snapshot not found.", detail=name)
        return Result.success(path)

    def _describe(self, path: Path, mtime_ns: int | None = None) -> Snapshot:
        if mtime_ns is None:
            mtime_ns = self._fs.mtime_ns(path)
        return Snapshot(
            name=path.name,
            path=path,
            created_at=datetime.fromtimestamp(mtime_ns / 1_000_000_000, tz=UTC),
            size_bytes=directory_size(self._fs, path),
        )
