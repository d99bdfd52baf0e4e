"""Shared fixtures for themesync tests."""

from __future__ import annotations

import io
import json
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from themesync.activity import ActivityLog
from themesync.app import Components, build_components
from themesync.config import Settings
from themesync.security import TokenCipher
from themesync.settings_store import SettingsStore

SHA_A = "a" * 40
SHA_B = "b" * 40
ENCRYPTION_SECRET = "test-encryption-secret-0123456789"
ADMIN_TOKEN = "admin-token-for-tests"
REPO_URL = "https://github.com/acme/acme-theme"
STYLE_CSS = "/*\nTheme Name: Acme\nVersion: 1.0.0\n*/\n"


def build_zip(files: dict[str, str]) -> bytes:
    """Build an in-memory zip archive from ``{member: content}``."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for member, content in files.items():
            zf.writestr(member, content)
    return buffer.getvalue()


def theme_archive(prefix: str = "acme-acme-theme-abc1234", **extra: str) -> bytes:
    files = {
        f"{prefix}/style.css": STYLE_CSS,
        f"{prefix}/index.php": "<?php // v1\n",
        f"{prefix}/assets/app.js": "console.log('v1');\n",
    }
    files.update({f"{prefix}/{name}": content for name, content in extra.items()})
    return build_zip(files)


class FakeGitHub:
    """Scriptable stand-in for the GitHub REST API behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.commit_sha = SHA_A
        self.commit_message = "Tweak header spacing"
        self.archive = theme_archive()
        self.branches = ["main", "dev"]
        self.failures: dict[str, tuple[int, dict[str, Any], dict[str, str]]] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def kind_of(path: str) -> str:
        if "/zipball/" in path:
            return "zipball"
        if "/commits/" in path:
            return "commit"
        if path.endswith("/branches"):
            return "branches"
        return "repo"

    def fail(
        self,
        kind: str,
        status: int,
        message: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.failures[kind] = (status, {"message": message}, headers or {})

    def count(self, kind: str) -> int:
        return sum(1 for r in self.requests if self.kind_of(r.url.path) == kind)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self.kind_of(request.url.path)
        if kind in self.failures:
            status, body, headers = self.failures[kind]
            return httpx.Response(status, json=body, headers=headers)
        if kind == "zipball":
            return httpx.Response(200, content=self.archive)
        if kind == "commit":
            return httpx.Response(
                200,
                json={
                    "sha": self.commit_sha,
                    "commit": {
                        "message": self.commit_message,
                        "author": {"name": "Dana", "date": "2026-10-01T12:00:00Z"},
                    },
                },
            )
        if kind == "branches":
            return httpx.Response(200, json=[{"name": b} for b in self.branches])
        return httpx.Response(
            200,
            json={
                "name": "acme-theme",
                "full_name": "acme/acme-theme",
                "description": "Acme storefront theme",
                "private": True,
                "default_branch": "main",
            },
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(ENCRYPTION_SECRET)


@pytest.fixture
def store(tmp_path: Path, cipher: TokenCipher) -> SettingsStore:
    settings_store = SettingsStore(tmp_path / "data" / "settings.json", cipher)
    settings_store.initialize()
    return settings_store


@pytest.fixture
def activity(tmp_path: Path) -> ActivityLog:
    return ActivityLog(tmp_path / "data" / "activity.json")


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Factory for ``Settings`` rooted in ``tmp_path`` with no .env loading."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "theme_dir": tmp_path / "wp-content" / "themes" / "acme",
            "data_dir": tmp_path / "data",
            "encryption_secret": ENCRYPTION_SECRET,
            "admin_token": ADMIN_TOKEN,
            "_env_file": None,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
async def components(make_settings: Callable[..., Settings], github: FakeGitHub):
    """Fully wired components talking to ``FakeGitHub``, with a repository configured."""
    built: Components = build_components(make_settings(), transport=github.transport)
    built.store.update(repo_url=REPO_URL, branch="main")
    yield built
    await built.close()


def write_theme(directory: Path, marker: str = "live") -> None:
    """Populate *directory* with a minimal installed theme."""
    (directory / "assets").mkdir(parents=True, exist_ok=True)
    (directory / "style.css").write_text(STYLE_CSS, encoding="utf-8")
    (directory / "index.php").write_text(f"<?php // {marker}\n", encoding="utf-8")
    (directory / "assets" / "app.js").write_text(json.dumps(marker), encoding="utf-8")


@pytest.fixture(name="write_theme")
def write_theme_fixture() -> Callable[..., None]:
    return write_theme


@pytest.fixture(name="theme_archive")
def theme_archive_fixture() -> Callable[..., bytes]:
    return theme_archive


@pytest.fixture(name="build_zip")
def build_zip_fixture() -> Callable[[dict[str, str]], bytes]:
    return build_zip
