"""Deployment orchestrator: keeps the live theme in sync with a branch.

Pipeline (one run per trigger, serialised by a process-wide lock):

1. Validate configuration and parse the repository reference
2. Fetch the latest commit on the configured branch
3. Snapshot the live theme directory (skipped on first install)
4. Download the branch archive
5. Extract it into a temporary directory
6. Locate the theme root (honouring the configured theme path)
7. Validate the theme manifest
8. Stage a copy next to the live directory and swap it in
9. Clear downstream caches (best effort)
10. Persist the applied commit, record success and notify listeners

Any failure short-circuits to a recorded failure. Completed side effects are
not rolled back: the snapshot from step 3 is the recovery path.
"""

from __future__ import annotations

import asyncio
import inspect
import shutil
import tempfile
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from themesync.activity import ActivityLog, Source
from themesync.archive import extract_archive, locate_theme_root, validate_theme
from themesync.codehost import CodeHostClient, CommitInfo
from themesync.errors import ErrorKind, PullerError, Result
from themesync.fs import FileSystem, LocalFileSystem, delete_tree, replace_directory, stage_copy
from themesync.logging import get_logger
from themesync.repo import RepositoryRef, parse_repository
from themesync.settings_store import Configuration, SettingsStore
from themesync.snapshots import Snapshot, SnapshotStore

log = get_logger("themesync.deployer")

COMMIT_MESSAGE_LIMIT = 100

CacheClearer = Callable[[], Awaitable[None] | None]
CompletionListener = Callable[[CommitInfo, Source], Awaitable[None] | None]


class Step(StrEnum):
    """Pipeline steps, in execution order."""

    VALIDATE_CONFIG = "validate_config"
    FETCH_LATEST_COMMIT = "fetch_latest_commit"
    CREATE_SNAPSHOT = "create_snapshot"
    DOWNLOAD_ARCHIVE = "download_archive"
    EXTRACT_ARCHIVE = "extract_archive"
    LOCATE_THEME_ROOT = "locate_theme_root"
    VALIDATE_THEME_MANIFEST = "validate_theme_manifest"
    REPLACE_LIVE_FILES = "replace_live_files"
    CLEAR_CACHES = "clear_caches"
    RECORD_SUCCESS = "record_success"


@dataclass
class UpdateCheck:
    """Outcome of ``check_for_updates``."""

    update_available: bool
    current_commit: str
    latest_commit: CommitInfo
    is_first_install: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "update_available": self.update_available,
            "current_commit": self.current_commit,
            "latest_commit": self.latest_commit.to_dict(),
            "is_first_install": self.is_first_install,
        }


@dataclass
class UpdateOutcome:
    """Outcome of a successful ``update``."""

    commit: CommitInfo
    theme_name: str
    snapshot: Snapshot | None = None
    steps_completed: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "commit": self.commit.to_dict(),
            "theme_name": self.theme_name,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "steps_completed": self.steps_completed,
            "duration_seconds": self.duration_seconds,
        }


class DeploymentOrchestrator:
    """Runs the update pipeline and the other operations that touch the live theme."""

    def __init__(
        self,
        settings_store: SettingsStore,
        client: CodeHostClient,
        snapshots: SnapshotStore,
        activity: ActivityLog,
        fs: FileSystem | None = None,
        step_timeout: float = 300.0,
        cache_clearers: list[CacheClearer] | None = None,
        listeners: list[CompletionListener] | None = None,
    ) -> None:
        self._store = settings_store
        self._client = client
        self._snapshots = snapshots
        self._activity = activity
        self._fs: FileSystem = fs or LocalFileSystem()
        self._step_timeout = step_timeout
        self._cache_clearers = list(cache_clearers or [])
        self._listeners = list(listeners or [])
        self._lock = asyncio.Lock()
        self._current_step: Step | None = None

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def artifact_dir(self) -> Path:
        return self._snapshots.artifact_dir

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def current_step(self) -> Step | None:
        return self._current_step

    def add_cache_clearer(self, clearer: CacheClearer) -> None:
        self._cache_clearers.append(clearer)

    def add_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    def status(self) -> dict[str, Any]:
        """Configuration-derived status for display."""
        config = self._store.load()
        parsed = parse_repository(config.repo_url) if config.repo_url else None
        ref = parsed.value if parsed is not None and parsed.ok else None
        return {
            "is_configured": ref is not None,
            "repo_url": config.repo_url,
            "repo_owner": ref.owner if ref else "",
            "repo_name": ref.repo if ref else "",
            "branch": config.branch,
            "theme_path": config.theme_path,
            "theme_dir": str(self.artifact_dir),
            "current_commit": config.last_applied_commit,
            "short_commit": config.last_applied_commit[:7],
            "last_check": config.last_check,
            "auto_update": config.auto_update,
            "busy": self.is_busy,
            "current_step": self._current_step.value if self._current_step else None,
        }

    # ------------------------------------------------------------------
    # Primary flows
    # ------------------------------------------------------------------

    async def update(self, source: Source = Source.MANUAL) -> Result[UpdateOutcome]:
        """Fetch, validate and install the latest commit of the configured branch."""
        if self._lock.locked():
            return self._busy(source)
        async with self._lock:
            return await self._run_pipeline(source)

    async def check_for_updates(self) -> Result[UpdateCheck]:
        """Compare the applied commit with the branch tip. Never touches the theme."""
        config = self._store.load()
        validated = self._validate_config(config)
        if not validated.ok:
            return Result.from_error(validated.error)  # type: ignore[arg-type]
        ref = validated.unwrap()

        self._client.clear_cache()
        fetched = await self._client.get_latest_commit(ref.owner, ref.repo, config.branch)
        if not fetched.ok:
            return Result.from_error(fetched.error)  # type: ignore[arg-type]
        latest = fetched.unwrap()

        current = self._store.load().last_applied_commit
        self._store.update(last_check=time.time())

        check = UpdateCheck(
            update_available=bool(current) and current != latest.sha,
            current_commit=current,
            latest_commit=latest,
            is_first_install=not current,
        )
        log.info(
            "update_check_completed",
            repo=ref.full_name,
            branch=config.branch,
            current=current[:7],
            latest=latest.short_sha,
            update_available=check.update_available,
        )
        return Result.success(check)

    async def restore_snapshot(
        self,
        name: str,
        source: Source = Source.MANUAL,
    ) -> Result[Snapshot]:
        """Replace the live theme with a snapshot."""
        if self._lock.locked():
            return self._busy(source)
        async with self._lock:
            result: Result[Snapshot] = await self._blocking(
                ErrorKind.RESTORE_FAILED, "restore", self._snapshots.restore, name, settles=True
            )
            if result.error is not None:
                self._activity.record_restore_failure(name, result.error.message, source)
                return result
            await self._clear_caches()
            self._activity.record_restore_success(name, source)
            return result

    async def delete_snapshot(self, name: str, source: Source = Source.MANUAL) -> Result[None]:
        """Delete a snapshot by name."""
        if self._lock.locked():
            return self._busy(source)
        async with self._lock:
            result: Result[None] = await self._blocking(
                ErrorKind.DELETE_FAILED, "delete", self._snapshots.delete, name, settles=True
            )
            if result.error is not None:
                self._activity.record(
                    f"Snapshot deletion failed: {result.error.message}",
                    "error",
                    source,
                    {"snapshot_name": name},
                )
                return result
            self._activity.record_snapshot_deleted(name, source)
            return result

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(self, source: Source) -> Result[UpdateOutcome]:
        start = time.monotonic()
        steps: list[str] = []
        archive: Path | None = None
        workdir: Path | None = None
        log.info("update_started", source=source.value)

        try:
            # 1. Validate configuration
            self._current_step = Step.VALIDATE_CONFIG
            config = self._store.load()
            validated = self._validate_config(config)
            if not validated.ok:
                return self._fail(validated.error, source, steps)  # type: ignore[arg-type]
            ref = validated.unwrap()
            steps.append(Step.VALIDATE_CONFIG.value)

            # 2. Latest commit
            self._current_step = Step.FETCH_LATEST_COMMIT
            # The archive is always the live branch tip, so the sha must be too.
            self._client.clear_cache()
            fetched = await self._client.get_latest_commit(ref.owner, ref.repo, config.branch)
            if not fetched.ok:
                return self._fail(fetched.error, source, steps)  # type: ignore[arg-type]
            commit = fetched.unwrap()
            steps.append(Step.FETCH_LATEST_COMMIT.value)

            # 3. Snapshot
            snapshot: Snapshot | None = None
            if self._fs.is_dir(self.artifact_dir) or config.last_applied_commit:
                created: Result[Snapshot] = await self._blocking(
                    ErrorKind.SNAPSHOT_FAILED, Step.CREATE_SNAPSHOT, self._snapshots.create
                )
                if not created.ok:
                    return self._fail(created.error, source, steps)  # type: ignore[arg-type]
                snapshot = created.unwrap()
                self._activity.record_snapshot_created(snapshot.name, str(snapshot.path))
                steps.append(Step.CREATE_SNAPSHOT.value)
            else:
                log.info("snapshot_skipped_first_install", theme_dir=str(self.artifact_dir))

            # 4. Download
            self._current_step = Step.DOWNLOAD_ARCHIVE
            downloaded = await self._client.download_archive(ref.owner, ref.repo, config.branch)
            if not downloaded.ok:
                return self._fail(downloaded.error, source, steps)  # type: ignore[arg-type]
            archive = downloaded.unwrap()
            steps.append(Step.DOWNLOAD_ARCHIVE.value)

            # 5. Extract
            workdir = Path(tempfile.mkdtemp(prefix="themesync-"))
            extracted: Result[Path] = await self._blocking(
                ErrorKind.EXTRACT_FAILED, Step.EXTRACT_ARCHIVE, extract_archive, archive, workdir
            )
            if not extracted.ok:
                return self._fail(extracted.error, source, steps)  # type: ignore[arg-type]
            steps.append(Step.EXTRACT_ARCHIVE.value)

            # 6. Locate theme root
            self._current_step = Step.LOCATE_THEME_ROOT
            located = locate_theme_root(workdir, config.theme_path)
            if not located.ok:
                return self._fail(located.error, source, steps)  # type: ignore[arg-type]
            theme_root = located.unwrap()
            steps.append(Step.LOCATE_THEME_ROOT.value)

            # 7. Validate manifest
            self._current_step = Step.VALIDATE_THEME_MANIFEST
            validated_theme = validate_theme(theme_root)
            if not validated_theme.ok:
                return self._fail(validated_theme.error, source, steps)  # type: ignore[arg-type]
            theme_name = validated_theme.unwrap()
            steps.append(Step.VALIDATE_THEME_MANIFEST.value)

            # 8. Swap in the new files
            replaced: Result[None] = await self._blocking(
                ErrorKind.COPY_FAILED,
                Step.REPLACE_LIVE_FILES,
                self._replace_live_files,
                theme_root,
                settles=True,
            )
            if not replaced.ok:
                return self._fail(replaced.error, source, steps)  # type: ignore[arg-type]
            steps.append(Step.REPLACE_LIVE_FILES.value)

            # 9. Caches
            self._current_step = Step.CLEAR_CACHES
            await self._clear_caches()
            steps.append(Step.CLEAR_CACHES.value)

            # 10. Record
            self._current_step = Step.RECORD_SUCCESS
            self._store.update(last_applied_commit=commit.sha, last_check=time.time())
            self._activity.record_update_success(
                commit.short_sha,
                source,
                {
                    "commit_sha": commit.sha,
                    "commit_message": commit.message[:COMMIT_MESSAGE_LIMIT],
                },
            )
            steps.append(Step.RECORD_SUCCESS.value)
            await self._notify(commit, source)

            outcome = UpdateOutcome(
                commit=commit,
                theme_name=theme_name,
                snapshot=snapshot,
                steps_completed=steps,
                duration_seconds=round(time.monotonic() - start, 2),
            )
            log.info(
                "update_completed",
                source=source.value,
                sha=commit.short_sha,
                theme=theme_name,
                duration_seconds=outcome.duration_seconds,
            )
            return Result.success(outcome)

        finally:
            self._current_step = None
            if archive is not None:
                self._discard_file(archive)
            if workdir is not None:
                self._discard_dir(workdir)

    def _validate_config(self, config: Configuration) -> Result[RepositoryRef]:
        if not config.repo_url:
            return Result.failure(ErrorKind.UNCONFIGURED, "No GitHub repository configured.")
        return parse_repository(config.repo_url)

    def _replace_live_files(self, theme_root: Path) -> Result[None]:
        target = self.artifact_dir
        try:
            self._fs.make_dir(target.parent)
            staging = stage_copy(self._fs, theme_root, target)
        except OSError as exc:
            log.error("theme_stage_failed", target=str(target), error=str(exc))
            return Result.failure(
                ErrorKind.COPY_FAILED, "Failed to copy theme files.", detail=str(exc)
            )
        try:
            replace_directory(self._fs, staging, target)
        except OSError as exc:
            log.error("theme_swap_failed", target=str(target), error=str(exc))
            try:
                delete_tree(self._fs, staging)
            except OSError:
                log.warning("theme_staging_cleanup_failed", path=str(staging))
            return Result.failure(
                ErrorKind.COPY_FAILED, "Failed to copy theme files.", detail=str(exc)
            )
        return Result.success(None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _blocking(
        self,
        kind: ErrorKind,
        step: Step | str,
        func: Callable[..., Result[Any]],
        *args: Any,
        settles: bool = False,
    ) -> Result[Any]:
        """Run a blocking step in a worker thread, bounded by the step timeout.

        A worker thread cannot be cancelled, so after a timeout this still
        waits for it to finish before returning; the caller's lock stays held
        until the filesystem is quiet again. With ``settles`` the step changes
        live state, and a worker that finishes successfully after the timeout
        wins over the timeout so the recorded state matches the disk.
        """
        if isinstance(step, Step):
            self._current_step = step
        label = str(step)
        worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self._step_timeout)
        except TimeoutError:
            log.error("pipeline_step_timeout", step=label, timeout=self._step_timeout)
        except Exception as exc:
            log.exception("pipeline_step_crashed", step=label)
            return Result.failure(kind, f"Unexpected error during {label}: {exc}", detail=str(exc))

        message = f"Step {label} timed out after {self._step_timeout:g}s."
        try:
            late = await worker
        except Exception as exc:
            log.exception("pipeline_step_crashed_after_timeout", step=label)
            return Result.failure(kind, message, detail=str(exc))

        if settles and isinstance(late, Result) and late.ok:
            log.warning("pipeline_step_overran", step=label, timeout=self._step_timeout)
            return late
        log.info("pipeline_step_settled_after_timeout", step=label)
        detail = late.error.message if isinstance(late, Result) and late.error else ""
        return Result.failure(kind, message, detail=detail)

    async def _clear_caches(self) -> None:
        for clearer in self._cache_clearers:
            try:
                outcome = clearer()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                log.warning("cache_clear_failed", clearer=repr(clearer), error=str(exc))
        log.debug("theme_caches_cleared", count=len(self._cache_clearers))

    async def _notify(self, commit: CommitInfo, source: Source) -> None:
        for listener in self._listeners:
            try:
                outcome = listener(commit, source)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                log.warning("update_listener_failed", listener=repr(listener), error=str(exc))

    def _fail(self, error: PullerError, source: Source, steps: list[str]) -> Result[Any]:
        step = self._current_step.value if self._current_step else None
        self._activity.record_update_failure(
            error.message,
            source,
            {"kind": error.kind.value, "step": step or ""},
        )
        log.warning(
            "update_failed",
            source=source.value,
            step=step,
            kind=error.kind.value,
            error=error.message,
            detail=error.detail,
            steps_completed=steps,
        )
        return Result.from_error(error)

    def _busy(self, source: Source) -> Result[Any]:
        error = PullerError(ErrorKind.UPDATE_IN_PROGRESS, "An update is already in progress.")
        self._activity.record_update_failure(error.message, source, {"kind": error.kind.value})
        log.warning("operation_rejected_busy", source=source.value)
        return Result.from_error(error)

    @staticmethod
    def _discard_file(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning("temp_file_cleanup_failed", path=str(path), error=str(exc))

    @staticmethod
    def _discard_dir(path: Path) -> None:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("temp_dir_cleanup_failed", path=str(path), error=str(exc))
