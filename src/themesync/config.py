"""Process settings for themesync."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SECRET_LENGTH = 16


class Settings(BaseSettings):
    """Settings loaded from ``THEMESYNC_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="THEMESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Deployment target
    theme_dir: Path = Field(description="Live theme directory kept in sync")
    data_dir: Path = Field(default=Path("data"), description="Directory for persisted state")
    snapshot_dir: Path | None = Field(
        default=None, description="Snapshot root (defaults to <data_dir>/snapshots)"
    )

    # Secrets
    encryption_secret: SecretStr = Field(
        description="Process-wide secret used to encrypt the access token (16+ chars)"
    )
    admin_token: SecretStr | None = Field(
        default=None, description="Token required by the admin HTTP routes"
    )

    # Code host
    api_base_url: str = Field(default="https://api.github.com", description="Code host API")
    request_timeout: float = Field(default=30.0, gt=0, description="API request timeout")
    download_timeout: float = Field(default=120.0, gt=0, description="Archive download timeout")

    # Pipeline
    step_timeout: float = Field(
        default=300.0, gt=0, description="Upper bound for snapshot, extract and copy steps"
    )
    webhook_background: bool = Field(
        default=False, description="Run webhook-triggered updates in a background task"
    )

    # Server
    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=8080, description="HTTP port")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("encryption_secret")
    @classmethod
    def _secret_long_enough(cls, value: SecretStr) -> SecretStr:
        if len(value.get_secret_value()) < MIN_SECRET_LENGTH:
            raise ValueError(f"must be at least {MIN_SECRET_LENGTH} characters")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def snapshot_root(self) -> Path:
        return self.snapshot_dir or self.data_dir / "snapshots"

    @property
    def settings_path(self) -> Path:
        return self.data_dir / "settings.json"

    @property
    def activity_path(self) -> Path:
        return self.data_dir / "activity.json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]
