"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from saccolink.common.errors import ConfigurationError

SANDBOX_BASE_URL = "https://sandboxapi.bitnob.co/api/v1"
PRODUCTION_BASE_URL = "https://api.bitnob.co/api/v1"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BITNOB_",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials
    base_url: str | None = Field(
        default=None,
        description=f"Base URL of the Bitnob API (e.g. {SANDBOX_BASE_URL})",
    )
    client_id: str | None = Field(
        default=None,
        description="Client identifier issued by Bitnob",
    )
    secret_key: str | None = Field(
        default=None,
        description="Shared HMAC secret issued by Bitnob",
    )

    # Signing
    include_client_header: bool = Field(
        default=False,
        description="Send the x-auth-client header with every signed request",
    )
    message_framing: Literal["concat", "length_prefixed"] = Field(
        default="concat",
        description="Signing message framing (concat is what the remote API expects)",
    )
    nonce_bytes: int = Field(
        default=16,
        description="Random bytes per nonce before hex encoding",
    )

    # Verification
    replay_tolerance_ms: int = Field(
        default=300_000,
        description="Maximum accepted clock skew for signed requests, in milliseconds",
    )
    nonce_cache_storage: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Storage backend for the verifier replay cache",
    )
    nonce_cache_sqlite_path: str = Field(
        default="data/nonces.sqlite",
        description="SQLite path for the replay cache",
    )
    nonce_cache_max_entries: int = Field(
        default=100_000,
        description="Max nonces held by the in-memory replay cache",
    )
    expected_client_id: str | None = Field(
        default=None,
        description="If set, the verifier requires this x-auth-client value",
    )

    # HTTP
    http_timeout: float = Field(
        default=10.0,
        description="Timeout for outbound API requests in seconds",
    )
    probe_delay_seconds: float = Field(
        default=0.05,
        description="Fixed pause between probe requests",
    )

    # Sandbox verifier server
    sandbox_host: str = Field(
        default="127.0.0.1",
        description="Host for the sandbox verifier server",
    )
    sandbox_port: int = Field(
        default=8089,
        description="Port for the sandbox verifier server",
    )
    auth_exempt_paths: tuple[str, ...] = Field(
        default=("/health", "/metrics"),
        description="Paths exempt from signature verification",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines",
    )

    def missing_credentials(self) -> list[str]:
        """Names of required credentials that are not configured."""
        missing = []
        if not self.base_url:
            missing.append("BITNOB_BASE_URL")
        if not self.client_id:
            missing.append("BITNOB_CLIENT_ID")
        if not self.secret_key:
            missing.append("BITNOB_SECRET_KEY")
        return missing

    def require_credentials(self) -> None:
        """Raise ConfigurationError unless base URL, client id and secret are set."""
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
