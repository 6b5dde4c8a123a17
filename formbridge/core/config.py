"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
import json
from typing import Any

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """FormBridge application settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "FormBridge"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ── Redis ────────────────────────────────────────────────────
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_url: str | None = None

    # ── Backend ──────────────────────────────────────────────────
    backend_host: str = "0.0.0.0"  # noqa: S104 - intentional for container deployments  # nosec B104
    backend_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Storage ──────────────────────────────────────────────────
    storage_backend: str = "memory"  # "memory" | "redis"
    credentials_source: str = "store"  # "store" | "env"

    # ── Remote APIs ──────────────────────────────────────────────
    http_timeout_seconds: float = 30.0
    schema_cache_ttl_seconds: int = 300
    hubspot_base_url: str = "https://api.hubapi.com"
    mailchimp_base_url_template: str = "https://{dc}.api.mailchimp.com/3.0"

    # ── Credentials (used when credentials_source = "env") ───────
    hubspot_access_token: SecretStr = SecretStr("")
    hubspot_portal_id: str = ""
    mailchimp_api_key: SecretStr = SecretStr("")
    mailchimp_audience_id: str = ""

    # ── Dispatch ─────────────────────────────────────────────────
    dispatch_verify_connection: bool = False
    dispatch_log_max_entries: int = 500

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(item) for item in parsed]
            except (json.JSONDecodeError, TypeError):
                return [origin.strip() for origin in v.split(",")]
        if isinstance(v, list):
            return [str(item) for item in v]
        return ["http://localhost:3000"]

    @field_validator("storage_backend", "credentials_source", mode="before")
    @classmethod
    def normalize_choice(cls, v: Any) -> str:
        return str(v).strip().lower()

    @model_validator(mode="after")
    def build_derived_urls(self) -> Settings:
        """Build redis_url from components if not set and check choices."""
        if not self.redis_url:
            self.redis_url = f"redis://{self.redis_host}:{self.redis_port}/0"
        if self.storage_backend not in ("memory", "redis"):
            raise ValueError(f"storage_backend must be 'memory' or 'redis', got {self.storage_backend!r}")
        if self.credentials_source not in ("store", "env"):
            raise ValueError(f"credentials_source must be 'store' or 'env', got {self.credentials_source!r}")
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
