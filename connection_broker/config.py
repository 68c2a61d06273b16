"""
Centralized configuration management for the connection broker.

This module provides a unified configuration system with support for:
- Environment variables
- Delegation token identities and signing keys
- Token vault endpoint settings
- Validation using Pydantic
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    SUPPORTED_SIGNING_ALGORITHMS,
    EnvironmentVariable,
    Limits,
    LogLevel,
    QueueName,
    ServiceIdentity,
    Timeouts,
)


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class QueueConfig(BaseModel):
    """Queue configuration for Azure Storage Queues."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    logs_queue_enabled: bool = Field(
        default_factory=lambda: os.getenv("LOGS_QUEUE_ENABLED", "false").lower() == "true",
        description="Ship log records to an Azure Storage queue",
    )
    logs_queue_name: str = Field(default=QueueName.LOGS.value, description="Logs queue name")

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class DelegationConfig(BaseModel):
    """Identities and keys used to verify delegation tokens."""

    audience: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DELEGATION_AUDIENCE.value, ServiceIdentity.AUDIENCE
        ),
        description="Expected aud claim (this service)",
    )
    authorized_party: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DELEGATION_AUTHORIZED_PARTY.value, ServiceIdentity.AUTHORIZED_PARTY
        ),
        description="Expected azp claim (trusted upstream caller)",
    )
    issuer: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DELEGATION_ISSUER.value, ServiceIdentity.ISSUER
        ),
        description="Expected iss claim (upstream backend)",
    )
    signing_key: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.DELEGATION_SIGNING_KEY.value, ""),
        description="HMAC secret or PEM public key",
        repr=False,
    )
    algorithms: List[str] = Field(
        default_factory=lambda: _env_list(EnvironmentVariable.DELEGATION_ALGORITHMS.value, "HS256"),
        description="Signature algorithm allow-list",
    )
    leeway_seconds: int = Field(default=0, ge=0, description="Clock skew tolerance on exp")
    max_token_lifetime_seconds: int = Field(
        default=Limits.MAX_DELEGATION_TOKEN_LIFETIME_SECONDS,
        gt=0,
        description="Minimum retention for consumed token ids",
    )

    @field_validator("algorithms")
    def validate_algorithms(cls, v: List[str]) -> List[str]:
        """Only asymmetric and HMAC algorithms are allowed; never 'none'."""
        if not v:
            raise ValueError("At least one signing algorithm must be configured")
        unsupported = [alg for alg in v if alg not in SUPPORTED_SIGNING_ALGORITHMS]
        if unsupported:
            raise ValueError(f"Unsupported signing algorithms: {unsupported}")
        return v


class VaultConfig(BaseModel):
    """External token vault endpoint configuration."""

    base_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.VAULT_BASE_URL.value, "https://api.nango.dev"
        ),
        description="Vault API base URL",
    )
    secret_key: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.VAULT_SECRET_KEY.value, ""),
        description="Vault API secret key",
        repr=False,
    )
    webhook_secret: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.VAULT_WEBHOOK_SECRET.value),
        description="Webhook signing secret; defaults to the secret key",
        repr=False,
    )
    auth_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.VAULT_AUTH_URL.value, "https://api.nango.dev/oauth/connect"
        ),
        description="Base URL for end-user authorization links",
    )
    timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(EnvironmentVariable.VAULT_TIMEOUT.value, str(Timeouts.VAULT_REQUEST))
        ),
        gt=0,
        description="Per-request timeout for vault calls",
    )

    @field_validator("base_url", "auth_url")
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def effective_webhook_secret(self) -> str:
        return self.webhook_secret or self.secret_key


class IssuanceConfig(BaseModel):
    """Access issuance behaviour."""

    default_min_ttl_seconds: int = Field(default=Limits.DEFAULT_MIN_TTL_SECONDS, ge=0)
    default_lifetime_seconds: int = Field(
        default=Limits.DEFAULT_ACCESS_LIFETIME_SECONDS,
        gt=0,
        description="Assumed lifetime when the vault reports no expiry",
    )
    refresh_on_low_ttl: bool = Field(
        default=True, description="Ask the vault to refresh material below the minimum TTL"
    )
    enforce_single_use: bool = Field(
        default=True, description="Reject delegation tokens whose jti was already consumed"
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.DEBUG.value, "false").lower()
        == "true",
        description="Debug mode; enables error detail in responses",
    )

    # Sub-configurations
    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    delegation: DelegationConfig = Field(
        default_factory=DelegationConfig, description="Delegation token configuration"
    )
    vault: VaultConfig = Field(default_factory=VaultConfig, description="Token vault configuration")
    issuance: IssuanceConfig = Field(
        default_factory=IssuanceConfig, description="Issuance configuration"
    )

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
