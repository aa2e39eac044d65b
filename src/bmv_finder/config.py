"""Application configuration using pydantic-settings."""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BMV_FINDER_",
        extra="ignore",
    )

    environment: Literal["development", "production"] = Field(
        default="development",
        description="Deployment environment; local fallback is never used in production",
    )

    # Storage
    storage_backend: Literal["local", "remote"] = Field(
        default="local",
        description="Which store to use: local SQLite file or remote libSQL HTTP database",
    )
    database_path: str = Field(default="data/land_registry.db")
    remote_database_url: str = Field(
        default="",
        description="libSQL/Turso database URL (libsql:// or https://)",
    )
    remote_auth_token: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token for the remote database",
    )
    allow_local_fallback: bool = Field(
        default=True,
        description="Fall back to the local store when the remote one is unreachable "
        "(ignored in production)",
    )
    remote_timeout_seconds: float = Field(default=30.0, gt=0)

    # Ingestion
    batch_size: int = Field(
        default=500,
        ge=1,
        le=2000,
        description="Rows per multi-row INSERT (16 bound parameters per row)",
    )
    progress_every: int = Field(default=10_000, ge=1)
    download_max_retries: int = Field(default=3, ge=1, le=10)
    download_initial_backoff_seconds: float = Field(default=5.0, ge=0)
    download_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for each download attempt"
    )
    update_timeout_seconds: float = Field(
        default=3600.0, gt=0, description="Budget for a whole update or load run"
    )
    monthly_update_base_url: str = Field(
        default=(
            "https://prod.publicdata.landregistry.gov.uk.s3-website-eu-west-1.amazonaws.com"
            "/pp-monthly-update"
        ),
    )
    monthly_update_filename_template: str = Field(
        default="{yy}-{mm}-pp-monthly-update-new-version.csv",
        description="Delta filename; {year}, {yy} and {mm} are filled from the expected period",
    )
    full_dataset_url: str = Field(
        default=(
            "http://prod.publicdata.landregistry.gov.uk.s3-website-eu-west-1.amazonaws.com"
            "/pp-complete.csv"
        ),
    )
    publication_lag_months: int = Field(
        default=1,
        ge=0,
        le=12,
        description="Months between today and the newest published monthly update",
    )

    # Queries
    search_default_limit: int = Field(default=100, ge=1, le=1000)

    # Web API
    update_token: SecretStr = Field(
        default=SecretStr(""),
        description="If set, POST /api/update-land-registry requires this bearer token",
    )
    web_port: int = Field(default=8000, description="Web server port")
    web_host: str = Field(default="0.0.0.0", description="Web server host")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def fallback_enabled(self) -> bool:
        """Whether a remote store may silently downgrade to the local one."""
        return self.allow_local_fallback and not self.is_production

    def monthly_update_url(self, year: int, month: int) -> str:
        """Build the monthly delta URL for a publication period."""
        filename = self.monthly_update_filename_template.format(
            year=year, yy=f"{year % 100:02d}", mm=f"{month:02d}"
        )
        return f"{self.monthly_update_base_url.rstrip('/')}/{year}/{filename}"
