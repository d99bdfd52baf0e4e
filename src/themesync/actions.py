"""Manual trigger surface shared by the admin HTTP routes and the CLI.

Every method returns a plain dict shaped ``{"success": True, "data": ...}``
or ``{"success": False, "message": ...}`` so callers can serialise it
without knowing about ``Result``.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from themesync.activity import ActivityLog, Source, Status
from themesync.codehost import CodeHostClient
from themesync.deployer import DeploymentOrchestrator
from themesync.errors import PullerError, Result
from themesync.logging import get_logger
from themesync.security import TokenCipher, generate_secret, mask_token, token_kind
from themesync.settings_store import SettingsStore
from themesync.snapshots import SnapshotStore, is_safe_name
from themesync.webhook import WEBHOOK_PATH

log = get_logger("themesync.actions")

EDITABLE_FIELDS = frozenset(
    {"repo_url", "branch", "theme_path", "access_token", "auto_update", "snapshot_retention"}
)
CLEAR_TOKEN_FIELD = "clear_access_token"


def ok(**data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def fail(message: str, kind: str | None = None) -> dict[str, Any]:
    response: dict[str, Any] = {"success": False, "message": message}
    if kind:
        response["kind"] = kind
    return response


def _from_error(error: PullerError | None) -> dict[str, Any]:
    if error is None:
        return fail("An error occurred.")
    return fail(error.message, error.kind.value)


class ManualActions:
    """Operator-facing operations."""

    def __init__(
        self,
        settings_store: SettingsStore,
        cipher: TokenCipher,
        client: CodeHostClient,
        orchestrator: DeploymentOrchestrator,
        snapshots: SnapshotStore,
        activity: ActivityLog,
    ) -> None:
        self._store = settings_store
        self._cipher = cipher
        self._client = client
        self._orchestrator = orchestrator
        self._snapshots = snapshots
        self._activity = activity

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> dict[str, Any]:
        """Current configuration with the access token masked."""
        config = self._store.load()
        token = self._cipher.decrypt(config.access_token)
        return ok(
            repo_url=config.repo_url,
            branch=config.branch,
            theme_path=config.theme_path,
            access_token=mask_token(token),
            has_access_token=bool(token),
            token_status={
                "stored": bool(config.access_token),
                "decrypts": bool(token),
                "type": token_kind(token),
            },
            auto_update=config.auto_update,
            snapshot_retention=config.snapshot_retention,
            webhook_secret=config.webhook_secret,
            webhook_path=WEBHOOK_PATH,
        )

    def save_settings(self, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply *changes*; ``clear_access_token: true`` removes the stored token."""
        changes = dict(changes)
        clear_token = changes.pop(CLEAR_TOKEN_FIELD, False)
        if not isinstance(clear_token, bool):
            return fail(f"Invalid settings: {CLEAR_TOKEN_FIELD} must be true or false.")

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            return fail(f"Unknown settings: {', '.join(sorted(unknown))}.")

        try:
            self._store.update(**changes)
        except ValidationError as exc:
            return fail(f"Invalid settings: {exc.error_count()} invalid value(s).")
        if clear_token:
            self._store.clear_access_token()
            self._activity.record("Access token removed", Status.INFO, Source.MANUAL)
        self._client.clear_cache()
        self._activity.record("Settings updated", Status.INFO, Source.MANUAL)
        log.info("settings_saved", fields=sorted(changes), cleared_token=clear_token)
        return ok(message="Settings saved successfully.")

    def regenerate_webhook_secret(self) -> dict[str, Any]:
        secret = generate_secret()
        self._store.update(webhook_secret=secret)
        self._activity.record("Webhook secret regenerated", Status.INFO, Source.MANUAL)
        log.info("webhook_secret_regenerated")
        return ok(message="Secret regenerated. Update it in GitHub.", secret=secret)

    # ------------------------------------------------------------------
    # Code host
    # ------------------------------------------------------------------

    async def test_connection(self, repo_url: str) -> dict[str, Any]:
        if not repo_url.strip():
            return fail("Please enter a repository URL.")
        result = await self._client.test_connection(repo_url)
        if not result.ok:
            return _from_error(result.error)
        return ok(message="Connection successful!", repo=result.unwrap().to_dict())

    async def check_for_updates(self) -> dict[str, Any]:
        result = await self._orchestrator.check_for_updates()
        if not result.ok:
            return _from_error(result.error)
        return ok(**result.unwrap().to_dict())

    async def update(self) -> dict[str, Any]:
        result = await self._orchestrator.update(source=Source.MANUAL)
        if not result.ok:
            return _from_error(result.error)
        return ok(
            message="Theme updated successfully!",
            outcome=result.unwrap().to_dict(),
            status=self._orchestrator.status(),
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def list_snapshots(self) -> dict[str, Any]:
        snapshots = self._snapshots.list(self._snapshots.artifact_id)
        return ok(snapshots=[s.to_dict() for s in snapshots])

    async def restore(self, name: str) -> dict[str, Any]:
        if not is_safe_name(name):
            return fail("Invalid snapshot name.")
        result = await self._orchestrator.restore_snapshot(name, Source.MANUAL)
        if not result.ok:
            return _from_error(result.error)
        return ok(message="Snapshot restored successfully!", snapshot=result.unwrap().to_dict())

    async def delete(self, name: str) -> dict[str, Any]:
        if not is_safe_name(name):
            return fail("Invalid snapshot name.")
        result: Result[None] = await self._orchestrator.delete_snapshot(name, Source.MANUAL)
        if not result.ok:
            return _from_error(result.error)
        return ok(message="Snapshot deleted successfully!")

    # ------------------------------------------------------------------
    # Activity log and status
    # ------------------------------------------------------------------

    def recent_log(self, count: int = 10) -> dict[str, Any]:
        return ok(entries=[e.to_dict() for e in self._activity.recent(count)])

    def clear_log(self) -> dict[str, Any]:
        self._activity.clear()
        log.info("activity_log_cleared")
        return ok(message="Logs cleared.")

    def status(self) -> dict[str, Any]:
        snapshots = self._snapshots.list(self._snapshots.artifact_id)
        return ok(
            **self._orchestrator.status(),
            snapshot_count=len(snapshots),
            latest_snapshot=snapshots[0].name if snapshots else None,
        )

    def uninstall(self) -> dict[str, Any]:
        """Delete stored configuration, the activity log and cached responses.

        Snapshots and the live theme are left in place.
        """
        self._store.purge()
        self._activity.purge()
        self._client.clear_cache()
        log.info("themesync_uninstalled")
        return ok(message="Configuration, activity log and cache removed.")
