"""HTTP server exposing the webhook endpoint and the admin API.

Routes:
    GET    /health                                      - liveness
    POST   /themesync/v1/webhook                        - GitHub deliveries
    GET    /themesync/v1/admin/status
    GET    /themesync/v1/admin/settings
    PUT    /themesync/v1/admin/settings
    POST   /themesync/v1/admin/test-connection
    POST   /themesync/v1/admin/check
    POST   /themesync/v1/admin/update
    GET    /themesync/v1/admin/snapshots
    POST   /themesync/v1/admin/snapshots/{name}/restore
    DELETE /themesync/v1/admin/snapshots/{name}
    POST   /themesync/v1/admin/webhook-secret
    GET    /themesync/v1/admin/log
    DELETE /themesync/v1/admin/log

Admin routes require the ``X-Admin-Token`` header and are refused outright
when no admin token is configured.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from themesync import __version__
from themesync.actions import ManualActions
from themesync.logging import get_logger
from themesync.security import validate_secret
from themesync.webhook import NAMESPACE, WEBHOOK_PATH, WebhookGateway

log = get_logger("themesync.server")

ADMIN_PREFIX = f"{NAMESPACE}/admin"
ADMIN_TOKEN_HEADER = "X-Admin-Token"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _respond(result: dict[str, Any]) -> web.Response:
    return web.json_response(result, status=200 if result.get("success") else 400)


class ThemeSyncServer:
    """aiohttp application wrapping ``ManualActions`` and ``WebhookGateway``."""

    def __init__(
        self,
        actions: ManualActions,
        gateway: WebhookGateway,
        host: str = "0.0.0.0",
        port: int = 8080,
        admin_token: str = "",
    ) -> None:
        self._actions = actions
        self._gateway = gateway
        self._host = host
        self._port = port
        self._admin_token = admin_token
        self._runner: web.AppRunner | None = None

    def _check_auth(self, request: web.Request) -> bool:
        provided = request.headers.get(ADMIN_TOKEN_HEADER, "")
        return validate_secret(provided, self._admin_token)

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.path.startswith(ADMIN_PREFIX) and not self._check_auth(request):
            log.warning("admin_request_unauthorized", path=request.path, remote=request.remote)
            return web.json_response({"success": False, "error": "Unauthorized"}, status=401)
        return await handler(request)

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception:
            log.exception("request_failed", method=request.method, path=request.path)
            return web.json_response(
                {"success": False, "error": "Internal server error"}, status=500
            )

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all routes registered."""
        app = web.Application(middlewares=[self._error_middleware, self._auth_middleware])
        app.router.add_get("/health", self.handle_health)
        app.router.add_post(WEBHOOK_PATH, self.handle_webhook)

        app.router.add_get(f"{ADMIN_PREFIX}/status", self.handle_status)
        app.router.add_get(f"{ADMIN_PREFIX}/settings", self.handle_get_settings)
        app.router.add_put(f"{ADMIN_PREFIX}/settings", self.handle_save_settings)
        app.router.add_post(f"{ADMIN_PREFIX}/test-connection", self.handle_test_connection)
        app.router.add_post(f"{ADMIN_PREFIX}/check", self.handle_check)
        app.router.add_post(f"{ADMIN_PREFIX}/update", self.handle_update)
        app.router.add_get(f"{ADMIN_PREFIX}/snapshots", self.handle_list_snapshots)
        app.router.add_post(f"{ADMIN_PREFIX}/snapshots/{{name}}/restore", self.handle_restore)
        app.router.add_delete(f"{ADMIN_PREFIX}/snapshots/{{name}}", self.handle_delete_snapshot)
        app.router.add_post(f"{ADMIN_PREFIX}/webhook-secret", self.handle_regenerate_secret)
        app.router.add_get(f"{ADMIN_PREFIX}/log", self.handle_get_log)
        app.router.add_delete(f"{ADMIN_PREFIX}/log", self.handle_clear_log)
        return app

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start serving on the configured host and port."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        log.info("server_started", host=self._host, port=self._port, version=__version__)

    async def stop(self) -> None:
        """Stop the server if it is running."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            log.info("server_stopped")

    # ------------------------------------------------------------------
    # Public endpoints
    # ------------------------------------------------------------------

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "version": __version__})

    async def handle_webhook(self, request: web.Request) -> web.Response:
        body = await request.read()
        response = await self._gateway.handle(body, request.headers)
        return web.json_response(response.to_dict(), status=response.status)

    # ------------------------------------------------------------------
    # Admin endpoints
    # ------------------------------------------------------------------

    async def handle_status(self, request: web.Request) -> web.Response:
        return _respond(self._actions.status())

    async def handle_get_settings(self, request: web.Request) -> web.Response:
        return _respond(self._actions.get_settings())

    async def handle_save_settings(self, request: web.Request) -> web.Response:
        payload = await self._json(request)
        if payload is None:
            return _respond({"success": False, "message": "Invalid JSON payload."})
        return _respond(self._actions.save_settings(payload))

    async def handle_test_connection(self, request: web.Request) -> web.Response:
        payload = await self._json(request) or {}
        repo_url = payload.get("repo_url")
        if not isinstance(repo_url, str):
            repo_url = ""
        return _respond(await self._actions.test_connection(repo_url))

    async def handle_check(self, request: web.Request) -> web.Response:
        return _respond(await self._actions.check_for_updates())

    async def handle_update(self, request: web.Request) -> web.Response:
        return _respond(await self._actions.update())

    async def handle_list_snapshots(self, request: web.Request) -> web.Response:
        return _respond(self._actions.list_snapshots())

    async def handle_restore(self, request: web.Request) -> web.Response:
        return _respond(await self._actions.restore(request.match_info["name"]))

    async def handle_delete_snapshot(self, request: web.Request) -> web.Response:
        return _respond(await self._actions.delete(request.match_info["name"]))

    async def handle_regenerate_secret(self, request: web.Request) -> web.Response:
        return _respond(self._actions.regenerate_webhook_secret())

    async def handle_get_log(self, request: web.Request) -> web.Response:
        try:
            count = int(request.query.get("count", "10"))
        except ValueError:
            count = 10
        return _respond(self._actions.recent_log(count))

    async def handle_clear_log(self, request: web.Request) -> web.Response:
        return _respond(self._actions.clear_log())

    @staticmethod
    async def _json(request: web.Request) -> dict[str, Any] | None:
        try:
            data = await request.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


async def serve_forever(server: ThemeSyncServer) -> None:
    """Run *server* until cancelled."""
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
