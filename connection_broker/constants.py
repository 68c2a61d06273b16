"""
Constants for the connection broker.

This module centralizes magic strings and numeric defaults so the validator,
vault client and handlers agree on them.
"""

from enum import Enum
from typing import Dict, List


class QueueName(str, Enum):
    """Standard queue names used by the broker."""

    LOGS = "logs-queue"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    FUNCTION_NAME = "FUNCTION_NAME"

    DELEGATION_AUDIENCE = "DELEGATION_AUDIENCE"
    DELEGATION_AUTHORIZED_PARTY = "DELEGATION_AUTHORIZED_PARTY"
    DELEGATION_ISSUER = "DELEGATION_ISSUER"
    DELEGATION_SIGNING_KEY = "DELEGATION_SIGNING_KEY"
    DELEGATION_ALGORITHMS = "DELEGATION_ALGORITHMS"

    VAULT_BASE_URL = "VAULT_BASE_URL"
    VAULT_SECRET_KEY = "VAULT_SECRET_KEY"
    VAULT_WEBHOOK_SECRET = "VAULT_WEBHOOK_SECRET"
    VAULT_AUTH_URL = "VAULT_AUTH_URL"
    VAULT_TIMEOUT = "VAULT_TIMEOUT"


class ServiceIdentity:
    """Fixed identities expected in delegation token claims."""

    AUDIENCE = "connections-service"
    AUTHORIZED_PARTY = "taoflow-backend"
    ISSUER = "wuwei-backend"


class DelegationClaim:
    """Delegation token claim names."""

    AUDIENCE = "aud"
    AUTHORIZED_PARTY = "azp"
    ISSUER = "iss"
    EXPIRY = "exp"
    TOKEN_ID = "jti"
    TENANT_ID = "tid"
    CONNECTION_ID = "cid"
    SUBJECT = "sub"
    SCOPES = "scp"
    AUTHORIZATION_VERSION = "cver"

    REQUIRED = (
        AUDIENCE,
        AUTHORIZED_PARTY,
        ISSUER,
        EXPIRY,
        TOKEN_ID,
        TENANT_ID,
        CONNECTION_ID,
        SUBJECT,
        SCOPES,
    )


# Algorithms a deployment may enable for delegation tokens
SUPPORTED_SIGNING_ALGORITHMS = frozenset(
    {"HS256", "HS384", "HS512", "RS256", "RS384", "RS512", "ES256", "ES384"}
)


class Provider(str, Enum):
    """Providers with known default scopes."""

    GOOGLE = "google"
    GITHUB = "github"
    GOOGLE_DRIVE = "google-drive"
    SLACK = "slack"


DEFAULT_SCOPES: Dict[str, List[str]] = {
    Provider.GOOGLE.value: ["openid", "email", "profile"],
    Provider.GITHUB.value: ["repo"],
    Provider.GOOGLE_DRIVE.value: ["https://www.googleapis.com/auth/drive.readonly"],
    Provider.SLACK.value: ["channels:history", "channels:read"],
}

# Correlation tag attached to vault sessions so activation can find the connection
CONNECT_ID_TAG = "connectId"
SCOPES_TAG = "scopes"

EVENT_ID_PREFIX = "evt_"


class Limits:
    """System limits and thresholds."""

    DEFAULT_MIN_TTL_SECONDS = 300
    DEFAULT_ACCESS_LIFETIME_SECONDS = 3600
    MAX_DELEGATION_TOKEN_LIFETIME_SECONDS = 300
    MAX_SCOPES_PER_CONNECTION = 100
    MAX_SCOPE_LENGTH = 255


class Timeouts:
    """Timeout values in seconds."""

    VAULT_REQUEST = 10
    QUEUE_OPERATION = 10
