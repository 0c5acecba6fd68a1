"""Mailbox sync configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern has its own prefix; :class:`Settings` nests them.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseSettings):
    """Relational store connection settings."""

    model_config = {"env_prefix": "DATABASE_"}

    url: str = Field(
        default="sqlite+aiosqlite:///./mailsync.db",
        description="Async SQLAlchemy URL (postgresql+asyncpg://... in production)",
    )
    pool_size: int = Field(default=5, description="Connection pool size (ignored for SQLite)")
    max_overflow: int = Field(default=10, description="Pool overflow (ignored for SQLite)")
    echo: bool = Field(default=False, description="Log emitted SQL")


class S3Config(BaseSettings):
    """Object storage settings for materialized attachments."""

    model_config = {"env_prefix": "S3_"}

    bucket: str = Field(default="email-attachments", description="S3 bucket name")
    prefix: str = Field(default="attachments", description="Key prefix for attachment uploads")
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint URL (e.g. for MinIO)",
    )
    public_base_url: str | None = Field(
        default=None,
        description="Base URL objects are publicly served from; derived from bucket/region if unset",
    )


class NylasConfig(BaseSettings):
    """Nylas v3 API settings (Provider A)."""

    model_config = {"env_prefix": "NYLAS_"}

    api_key: SecretStr = Field(default=SecretStr(""), description="Nylas application API key")
    api_uri: str = Field(default="https://api.us.nylas.com", description="Nylas API region base URL")


class GraphConfig(BaseSettings):
    """Microsoft Graph settings (Provider B)."""

    model_config = {"env_prefix": "GRAPH_"}

    base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Graph API base URL",
    )


class ImapConfig(BaseSettings):
    """Defaults for IMAP sessions (Provider C)."""

    model_config = {"env_prefix": "IMAP_"}

    mailbox: str = Field(default="INBOX", description="Mailbox selected when no folder allow-list is given")
    use_ssl: bool = Field(default=True, description="Default TLS setting for accounts that do not specify one")


class RetryConfig(BaseSettings):
    """Retry / backoff settings for page fetches, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum attempts per page fetch")
    initial_wait_seconds: float = Field(default=1.0, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=20.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class SyncConfig(BaseSettings):
    """Orchestrator defaults."""

    model_config = {"env_prefix": "SYNC_"}

    batch_size: int = Field(default=50, description="Default page size requested from providers")
    provider_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound on any single provider call",
    )
    stale_sync_seconds: float = Field(
        default=3600.0,
        description="A 'syncing' account untouched for this long may be taken over by a new run",
    )


class Settings(BaseSettings):
    """Root configuration for the mailsync service.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "MAILSYNC_"}

    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=8080, description="HTTP bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=True, description="Use JSON log output (True for prod, False for dev)")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    s3: S3Config = Field(default_factory=S3Config)
    nylas: NylasConfig = Field(default_factory=NylasConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    imap: ImapConfig = Field(default_factory=ImapConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
