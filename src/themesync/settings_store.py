"""Persisted runtime configuration.

The configuration is a single JSON document of individual keys stored in
the data directory. All writes go through ``SettingsStore.update`` so that
value normalisation, token encryption and cache invalidation happen in one
place.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from themesync.logging import get_logger
from themesync.security import TokenCipher, generate_secret
from themesync.security.cipher import is_masked

log = get_logger("themesync.settings_store")

MIN_RETENTION = 1
MAX_RETENTION = 10

# Changing any of these invalidates cached code-host responses.
CACHE_SENSITIVE_FIELDS = frozenset({"repo_url", "branch", "access_token"})


class Configuration(BaseModel):
    """Persisted configuration for one synced theme."""

    repo_url: str = ""
    branch: str = "main"
    theme_path: str = ""
    access_token: str = Field(default="", description="Encrypted access token")
    auto_update: bool = True
    snapshot_retention: int = 3
    webhook_secret: str = ""
    last_applied_commit: str = ""
    last_check: float = 0.0

    @field_validator("snapshot_retention", mode="before")
    @classmethod
    def _clamp_retention(cls, value: Any) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            number = 3
        return max(MIN_RETENTION, min(MAX_RETENTION, number))

    @field_validator("theme_path", mode="before")
    @classmethod
    def _strip_slashes(cls, value: Any) -> str:
        return str(value or "").strip().strip("/")

    @field_validator("repo_url", "branch", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.repo_url)


ChangeListener = Callable[[set[str]], None]


class SettingsStore:
    """Loads and saves ``Configuration`` as a JSON document."""

    def __init__(self, path: Path, cipher: TokenCipher) -> None:
        self._path = Path(path)
        self._cipher = cipher
        self._listeners: list[ChangeListener] = []

    @property
    def path(self) -> Path:
        return self._path

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback invoked with the names of cache-sensitive fields that changed."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> Configuration:
        """Write install defaults if no configuration exists yet."""
        if self._path.exists():
            config = self.load()
            if not config.webhook_secret:
                config = self.update(webhook_secret=generate_secret())
            return config
        config = Configuration(webhook_secret=generate_secret())
        self._save(config)
        log.info("settings_initialized", path=str(self._path))
        return config

    def purge(self) -> None:
        """Delete the persisted configuration."""
        self._path.unlink(missing_ok=True)
        self._path.with_suffix(".tmp").unlink(missing_ok=True)
        log.info("settings_purged", path=str(self._path))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self) -> Configuration:
        """Read the stored configuration, falling back to defaults."""
        if not self._path.exists():
            return Configuration()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings document is not an object")
            return Configuration.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            log.warning("settings_load_failed", path=str(self._path), error=str(exc))
            return Configuration()

    def access_token(self) -> str:
        """Decrypted access token, or ``""``."""
        return self._cipher.decrypt(self.load().access_token)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update(self, **changes: Any) -> Configuration:
        """Apply *changes* and persist the result.

        ``access_token`` is given in plain text; an empty or masked value
        leaves the stored token untouched.
        """
        current = self.load()
        if "access_token" in changes:
            token = str(changes.pop("access_token") or "").strip()
            if token and not is_masked(token):
                changes["access_token"] = self._cipher.encrypt(token)

        unknown = set(changes) - set(Configuration.model_fields)
        if unknown:
            raise KeyError(f"unknown configuration keys: {sorted(unknown)}")

        updated = Configuration.model_validate({**current.model_dump(), **changes})
        self._save(updated)

        changed = {
            name
            for name in CACHE_SENSITIVE_FIELDS
            if getattr(current, name) != getattr(updated, name)
        }
        if changed:
            for listener in self._listeners:
                listener(changed)
        return updated

    def clear_access_token(self) -> Configuration:
        """Remove the stored token."""
        current = self.load()
        if not current.access_token:
            return current
        updated = current.model_copy(update={"access_token": ""})
        self._save(updated)
        for listener in self._listeners:
            listener({"access_token"})
        return updated

    def _save(self, config: Configuration) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(config.model_dump(), indent=2, sort_keys=True),
            encoding="utf-8",
        )
        tmp_path.replace(self._path)
