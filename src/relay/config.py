"""Relay configuration using pydantic-settings.

This module defines the RelaySettings class that reads configuration from
environment variables with the RELAY_ prefix. Secrets and the automation
actor id must be set via environment variables for the relay to start.
"""

import re
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


class RelaySettings(BaseSettings):
    """Relay configuration from environment variables.

    All environment variables are prefixed with RELAY_ (e.g., RELAY_WEBHOOK_SECRET).

    Required fields (must be set via environment variables):
    - webhook_secret: Shared secret for validating webhook signatures
    - app_private_key: PEM encoded RSA key of the GitHub App
    - webhook_slug: Path segment of the webhook endpoint
    - automation_actor_id: GitHub user id whose workflow runs get check runs
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub App Configuration
    # -------------------------------------------------------------------------
    # Secret shared with GitHub for the X-Hub-Signature-256 header
    webhook_secret: str

    # PEM encoded private key used to sign app JWTs
    app_private_key: str

    # Webhook endpoint is served at /webhooks/{webhook_slug}
    webhook_slug: str

    # Workflow runs triggered by this actor are mirrored as check runs
    automation_actor_id: int

    # Literal prefix that marks a pull request comment as a command
    command_prefix: str = "!harmful"

    # -------------------------------------------------------------------------
    # Storage Configuration
    # -------------------------------------------------------------------------
    # Redis connection string; an in-memory store is used when unset
    redis_url: Optional[str] = None

    # -------------------------------------------------------------------------
    # Transport Configuration
    # -------------------------------------------------------------------------
    request_timeout_seconds: float = 60.0

    max_body_bytes: int = 30_000_000

    # -------------------------------------------------------------------------
    # Background Work Configuration
    # -------------------------------------------------------------------------
    worker_count: int = 4

    queue_size: int = 256

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 3000

    log_level: str = "INFO"

    json_logs: bool = False

    # GET / redirects here; the root path is a 404 when unset
    home_url: Optional[str] = "https://github.com/harmless-tech/test-github-app"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: str) -> str:
        """Validate that the webhook secret is not empty and strip it."""
        if not v or not v.strip():
            raise ValueError("webhook_secret cannot be empty")
        return v.strip()

    @field_validator("app_private_key")
    @classmethod
    def validate_app_private_key(cls, v: str) -> str:
        """Validate that the private key looks like a PEM block."""
        if not v or "PRIVATE KEY" not in v:
            raise ValueError("app_private_key must be a PEM encoded private key")
        return v.strip()

    @field_validator("webhook_slug")
    @classmethod
    def validate_webhook_slug(cls, v: str) -> str:
        """Validate that the slug is a single URL path segment."""
        v = v.strip().strip("/")
        if not _SLUG_PATTERN.match(v):
            raise ValueError(
                "webhook_slug must contain only letters, digits, '-' and '_'"
            )
        return v

    @field_validator("automation_actor_id")
    @classmethod
    def validate_actor_id(cls, v: int) -> int:
        """Validate that the actor id is a positive GitHub id."""
        if v < 1:
            raise ValueError("automation_actor_id must be a positive integer")
        return v

    @field_validator("command_prefix")
    @classmethod
    def validate_command_prefix(cls, v: str) -> str:
        """Validate that the command prefix is a single non-empty token."""
        v = v.strip()
        if not v or any(ch.isspace() for ch in v):
            raise ValueError("command_prefix must be a single non-empty token")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the Redis URL scheme when one is configured."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError(
                "redis_url must start with redis://, rediss:// or unix://"
            )
        return v

    @field_validator("home_url")
    @classmethod
    def validate_home_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the home page URL; blank disables the redirect."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("home_url must be an http(s) URL")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate that the timeout is positive."""
        if v <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        return v

    @field_validator("max_body_bytes", "worker_count", "queue_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that sizes and counts are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a standard level name."""
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(
                "log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL"
            )
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def get_settings() -> RelaySettings:
    """Create and return a RelaySettings instance.

    Returns:
        RelaySettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return RelaySettings()
