"""User-facing activity log.

A bounded, newest-first list of operations (updates, snapshots, restores,
webhook deliveries) persisted as one JSON document. This is the audit trail
shown to operators; process diagnostics go through structlog instead.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from themesync.logging import get_logger

log = get_logger("themesync.activity")

MAX_ENTRIES = 20
MAX_METADATA_DEPTH = 1

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")
_KEY_RE = re.compile(r"[^a-z0-9_-]")


class Status(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Source(StrEnum):
    WEBHOOK = "webhook"
    MANUAL = "manual"
    SYSTEM = "system"


def sanitize_text(value: Any) -> str:
    """Strip tags and control characters and collapse whitespace."""
    text = _TAG_RE.sub("", str(value))
    text = _CONTROL_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def sanitize_key(key: Any) -> str:
    return _KEY_RE.sub("", str(key).lower())


def sanitize_metadata(metadata: Any, depth: int = 0) -> dict[str, Any]:
    """Keep scalar values and at most one level of nested mappings."""
    if not isinstance(metadata, dict):
        return {}

    clean: dict[str, Any] = {}
    for raw_key, value in metadata.items():
        key = sanitize_key(raw_key)
        if not key:
            continue
        if isinstance(value, bool):
            clean[key] = value
        elif isinstance(value, int | float):
            clean[key] = value
        elif isinstance(value, str):
            clean[key] = sanitize_text(value)
        elif isinstance(value, dict) and depth < MAX_METADATA_DEPTH:
            clean[key] = sanitize_metadata(value, depth + 1)
    return clean


def _coerce(enum_cls: type[StrEnum], value: Any, default: StrEnum) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return default


@dataclass
class LogEntry:
    """One activity record."""

    message: str
    status: Status = Status.INFO
    source: Source = Source.SYSTEM
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"log_{uuid.uuid4().hex}")
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "message": self.message,
            "status": self.status.value,
            "source": self.source.value,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogEntry:
        return cls(
            id=str(data.get("id", "")),
            timestamp=str(data.get("timestamp", "")),
            message=str(data.get("message", "")),
            status=_coerce(Status, data.get("status"), Status.INFO),
            source=_coerce(Source, data.get("source"), Source.SYSTEM),
            metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else {},
        )


class ActivityLog:
    """Append-only ring buffer of ``LogEntry`` records."""

    def __init__(self, path: Path, max_entries: int = MAX_ENTRIES) -> None:
        self._path = Path(path)
        self._max_entries = max_entries

    def record(
        self,
        message: str,
        status: Status | str = Status.INFO,
        source: Source | str = Source.SYSTEM,
        metadata: dict[str, Any] | None = None,
    ) -> LogEntry:
        """Prepend an entry, dropping the oldest beyond the cap."""
        entry = LogEntry(
            message=sanitize_text(message),
            status=_coerce(Status, status, Status.INFO),
            source=_coerce(Source, source, Source.SYSTEM),
            metadata=sanitize_metadata(metadata or {}),
        )
        entries = [entry, *self._load()][: self._max_entries]
        self._save(entries)
        log.debug(
            "activity_recorded",
            status=entry.status.value,
            source=entry.source.value,
            message=entry.message,
        )
        return entry

    def recent(self, count: int = 10) -> list[LogEntry]:
        return self._load()[: max(0, count)]

    def all(self) -> list[LogEntry]:
        return self._load()

    def clear(self) -> None:
        self._save([])

    def purge(self) -> None:
        """Remove the persisted log entirely."""
        self._path.unlink(missing_ok=True)
        self._path.with_suffix(".tmp").unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Canned recorders
    # ------------------------------------------------------------------

    def record_update_success(
        self,
        version: str,
        source: Source | str = Source.MANUAL,
        metadata: dict[str, Any] | None = None,
    ) -> LogEntry:
        return self.record(
            f"Theme updated successfully to {version}",
            Status.SUCCESS,
            source,
            {**(metadata or {}), "version": version},
        )

    def record_update_failure(
        self,
        error: str,
        source: Source | str = Source.MANUAL,
        metadata: dict[str, Any] | None = None,
    ) -> LogEntry:
        return self.record(
            f"Theme update failed: {error}",
            Status.ERROR,
            source,
            {**(metadata or {}), "error": error},
        )

    def record_snapshot_created(self, name: str, path: str) -> LogEntry:
        return self.record(
            "Theme snapshot created",
            Status.INFO,
            Source.SYSTEM,
            {"snapshot_name": name, "snapshot_path": path},
        )

    def record_snapshot_deleted(self, name: str, source: Source | str = Source.MANUAL) -> LogEntry:
        return self.record(
            f"Snapshot deleted: {name}",
            Status.INFO,
            source,
            {"snapshot_name": name},
        )

    def record_restore_success(self, name: str, source: Source | str = Source.MANUAL) -> LogEntry:
        return self.record(
            f"Theme restored from snapshot: {name}",
            Status.SUCCESS,
            source,
            {"snapshot_name": name},
        )

    def record_restore_failure(
        self,
        name: str,
        error: str,
        source: Source | str = Source.MANUAL,
    ) -> LogEntry:
        return self.record(
            f"Theme restore failed: {error}",
            Status.ERROR,
            source,
            {"snapshot_name": name, "error": error},
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> list[LogEntry]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("activity_load_failed", path=str(self._path), error=str(exc))
            return []
        if not isinstance(data, list):
            return []
        return [LogEntry.from_dict(item) for item in data if isinstance(item, dict)]

    def _save(self, entries: list[LogEntry]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps([e.to_dict() for e in entries], indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(self._path)
