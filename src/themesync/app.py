"""Explicit wiring of the themesync components."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from themesync.actions import ManualActions
from themesync.activity import ActivityLog
from themesync.codehost import CodeHostClient
from themesync.config import Settings
from themesync.deployer import DeploymentOrchestrator
from themesync.fs import FileSystem, LocalFileSystem
from themesync.logging import get_logger
from themesync.security import TokenCipher
from themesync.server import ThemeSyncServer
from themesync.settings_store import SettingsStore
from themesync.snapshots import SnapshotStore
from themesync.webhook import WebhookGateway

log = get_logger("themesync.app")


@dataclass
class Components:
    """Everything built at process start, passed around by reference."""

    settings: Settings
    cipher: TokenCipher
    store: SettingsStore
    client: CodeHostClient
    snapshots: SnapshotStore
    activity: ActivityLog
    orchestrator: DeploymentOrchestrator
    gateway: WebhookGateway
    actions: ManualActions

    def server(self) -> ThemeSyncServer:
        admin_token = self.settings.admin_token
        return ThemeSyncServer(
            actions=self.actions,
            gateway=self.gateway,
            host=self.settings.host,
            port=self.settings.port,
            admin_token=admin_token.get_secret_value() if admin_token else "",
        )

    async def close(self) -> None:
        await self.gateway.drain()
        await self.client.close()


def build_components(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
    fs: FileSystem | None = None,
) -> Components:
    """Construct and connect every component for *settings*."""
    fs = fs or LocalFileSystem()
    cipher = TokenCipher(settings.encryption_secret.get_secret_value())

    store = SettingsStore(settings.settings_path, cipher)
    store.initialize()

    client = CodeHostClient(
        token_provider=store.access_token,
        base_url=settings.api_base_url,
        timeout=settings.request_timeout,
        download_timeout=settings.download_timeout,
        transport=transport,
    )
    store.add_listener(lambda changed: client.clear_cache())

    snapshots = SnapshotStore(
        settings.snapshot_root,
        settings.theme_dir,
        retention=lambda: store.load().snapshot_retention,
        fs=fs,
    )
    activity = ActivityLog(settings.activity_path)
    orchestrator = DeploymentOrchestrator(
        settings_store=store,
        client=client,
        snapshots=snapshots,
        activity=activity,
        fs=fs,
        step_timeout=settings.step_timeout,
    )
    gateway = WebhookGateway(
        settings_store=store,
        orchestrator=orchestrator,
        activity=activity,
        background=settings.webhook_background,
    )
    actions = ManualActions(
        settings_store=store,
        cipher=cipher,
        client=client,
        orchestrator=orchestrator,
        snapshots=snapshots,
        activity=activity,
    )

    log.info(
        "components_built",
        theme_dir=str(settings.theme_dir),
        data_dir=str(settings.data_dir),
        snapshot_root=str(settings.snapshot_root),
    )
    return Components(
        settings=settings,
        cipher=cipher,
        store=store,
        client=client,
        snapshots=snapshots,
        activity=activity,
        orchestrator=orchestrator,
        gateway=gateway,
        actions=actions,
    )
