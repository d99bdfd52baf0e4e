"""Inbound push-notification gateway.

Authenticates GitHub webhook deliveries with the stored HMAC secret, filters
them down to pushes on the tracked branch, and hands those to the
deployment orchestrator. Every outcome is written to the activity log with
``source=webhook`` before the response is returned.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from themesync.activity import ActivityLog, Source, Status
from themesync.deployer import DeploymentOrchestrator
from themesync.errors import ErrorKind
from themesync.logging import get_logger
from themesync.security import verify_signature
from themesync.settings_store import SettingsStore

log = get_logger("themesync.webhook")

NAMESPACE = "/themesync/v1"
WEBHOOK_PATH = f"{NAMESPACE}/webhook"

SIGNATURE_HEADER = "x-hub-signature-256"
EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"
BRANCH_REF_PREFIX = "refs/heads/"


@dataclass
class WebhookResponse:
    """HTTP status plus the JSON body returned to the sender."""

    status: int
    success: bool
    message: str
    kind: ErrorKind | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


class WebhookGateway:
    """Verifies and dispatches webhook deliveries."""

    def __init__(
        self,
        settings_store: SettingsStore,
        orchestrator: DeploymentOrchestrator,
        activity: ActivityLog,
        background: bool = False,
    ) -> None:
        self._store = settings_store
        self._orchestrator = orchestrator
        self._activity = activity
        self._background = background
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def handle(self, body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        """Process one delivery. *body* must be the raw, unparsed request body."""
        normalized = {str(k).lower(): v for k, v in headers.items()}
        signature = normalized.get(SIGNATURE_HEADER, "")
        event = normalized.get(EVENT_HEADER, "")
        delivery = normalized.get(DELIVERY_HEADER, "")

        self._note(
            f"Webhook received: {event or 'unknown'} (delivery: {delivery or 'unknown'})",
            Status.INFO,
        )
        log.info("webhook_received", gh_event=event or "unknown", delivery=delivery or "unknown")

        if event == "ping":
            self._note("Webhook ping answered", Status.INFO)
            return WebhookResponse(200, True, "Pong! Webhook is configured correctly.")

        if not signature:
            self._note("Webhook rejected: missing signature", Status.ERROR)
            log.warning("webhook_missing_signature", delivery=delivery)
            return WebhookResponse(
                401, False, "Missing signature header.", ErrorKind.MISSING_SIGNATURE
            )

        config = self._store.load()
        if not verify_signature(body, signature, config.webhook_secret):
            self._note("Webhook rejected: invalid signature", Status.ERROR)
            log.warning("webhook_invalid_signature", delivery=delivery)
            return WebhookResponse(401, False, "Invalid signature.", ErrorKind.INVALID_SIGNATURE)

        if event != "push":
            self._note(f"Webhook event ignored: {event or 'unknown'}", Status.INFO)
            return WebhookResponse(200, True, "Event type not handled.")

        payload = self._parse(body)
        if not payload:
            self._note("Webhook rejected: invalid JSON payload", Status.ERROR)
            log.warning("webhook_bad_payload", delivery=delivery)
            return WebhookResponse(400, False, "Invalid JSON payload.", ErrorKind.BAD_PAYLOAD)

        return await self._handle_push(payload, config.branch, config.auto_update)

    async def _handle_push(
        self,
        payload: dict[str, Any],
        configured_branch: str,
        auto_update: bool,
    ) -> WebhookResponse:
        ref = payload.get("ref")
        ref = ref if isinstance(ref, str) else ""
        pushed_branch = ref.removeprefix(BRANCH_REF_PREFIX)

        if pushed_branch != configured_branch:
            self._note(
                f"Push to branch {pushed_branch} ignored (configured: {configured_branch})",
                Status.INFO,
            )
            log.info("webhook_branch_ignored", pushed=pushed_branch, configured=configured_branch)
            return WebhookResponse(200, True, "Push to non-tracked branch ignored.")

        if not auto_update:
            self._note("Push received but auto-update is disabled", Status.INFO)
            return WebhookResponse(200, True, "Auto-update is disabled. Push notification logged.")

        sha = payload.get("after")
        sha = sha if isinstance(sha, str) else ""
        head = payload.get("head_commit")
        message = head.get("message", "") if isinstance(head, dict) else ""
        message = message if isinstance(message, str) else ""

        self._note(f"Processing push: {sha[:7]} - {message[:50]}", Status.INFO)
        log.info("webhook_push_accepted", sha=sha[:7], branch=pushed_branch)

        if self._background:
            task = asyncio.create_task(self._run_update())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return WebhookResponse(200, True, "Update started.")

        return await self._run_update()

    async def _run_update(self) -> WebhookResponse:
        result = await self._orchestrator.update(source=Source.WEBHOOK)
        error = result.error
        if error is not None:
            log.warning("webhook_update_failed", kind=error.kind.value, error=error.message)
            return WebhookResponse(500, False, error.message, error.kind)
        return WebhookResponse(200, True, "Theme updated successfully.")

    async def drain(self) -> None:
        """Wait for background updates started by earlier deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _note(self, message: str, status: Status) -> None:
        self._activity.record(message, status, Source.WEBHOOK)

    @staticmethod
    def _parse(body: bytes) -> dict[str, Any] | None:
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) else None
