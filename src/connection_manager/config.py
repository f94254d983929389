"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to a .env file
  - Validate types and constraints at startup
  - Keep the Vault token and database password out of source control

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so ENGINE__URL maps to
engine.url, DATABASE__HOST to database.host, SCHEDULER__CRON to scheduler.cron.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root .env, independent of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class EngineSettings(BaseModel):
    """
    Vault connection and PKI/KV layout.

    One engine client is built per environment from these settings; KV keys
    are prefixed with the environment id.
    """

    url: str = Field(description="Vault base URL, e.g. https://vault:8200")
    token: SecretStr = Field(description="Vault token")
    pki_mount: str = Field(default="pki", description="Intermediate PKI mount (issue, revoke)")
    root_pki_mount: str = Field(default="pki-root", description="Root PKI mount")
    kv_mount: str = Field(default="secret", description="KV v1 mount for records and bundles")
    issue_role: str = Field(default="server-cert", description="PKI role used to sign hub leaves")
    issue_ttl: str = Field(default="8760h", description="TTL requested for hub leaves")
    verify_tls: bool = Field(default=True)


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection configuration.

    Accepts either a full connection string via DATABASE__DSN or individual
    components (host, port, name, username, password). The DSN wins when both
    are given.
    """

    dsn: SecretStr | None = Field(
        default=None,
        description="Full PostgreSQL connection string (overrides individual fields)",
    )
    host: str | None = Field(default=None)
    port: int = Field(default=5432, ge=1, le=65535)
    name: str | None = Field(default=None)
    username: str | None = Field(default=None)
    password: SecretStr | None = Field(default=None)

    @model_validator(mode="after")
    def resolve_dsn(self) -> DatabaseSettings:
        """Build `dsn` from the components when it was not given directly."""
        if self.dsn is not None:
            return self
        missing = [
            f
            for f, v in [
                ("DATABASE__HOST", self.host),
                ("DATABASE__NAME", self.name),
                ("DATABASE__USERNAME", self.username),
                ("DATABASE__PASSWORD", self.password),
            ]
            if not v
        ]
        if missing:
            raise ValueError("Set DATABASE__DSN or provide all of: " + ", ".join(missing))
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        assert self.dsn is not None  # guaranteed by resolve_dsn
        return self.dsn.get_secret_value()


class SchedulerSettings(BaseModel):
    """
    Whitelist refresh schedule, as a standard 5-field cron expression.

    Format: minute hour day-of-month month day-of-week
      "*/15 * * * *" — every 15 minutes (default)
      "0 * * * *"    — hourly
    """

    cron: str = Field(
        default="*/15 * * * *",
        description="Cron expression (5 fields: minute hour dom month dow)",
    )

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(fields)}: {value!r}"
            )
        return value.strip()


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    engine: EngineSettings
    database: DatabaseSettings
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())

    http_timeout_seconds: int = Field(default=60, ge=1)
    run_on_startup: bool = Field(default=True)
    log_level: str = Field(default="INFO")
