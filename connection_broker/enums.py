"""
Enums used across the connection_broker package.

Kept apart from the models so schemas and services can import them without
pulling in SQLAlchemy metadata.
"""

from enum import Enum


class ConnectionStatus(str, Enum):
    """Connection lifecycle states. Transitions only move forward."""

    PENDING = "pending"
    ACTIVE = "active"
    REVOKED = "revoked"

    @classmethod
    def live_statuses(cls):
        return (cls.PENDING.value, cls.ACTIVE.value)

    @classmethod
    def is_forward(cls, current: str, target: str) -> bool:
        """True when ``target`` is ``current`` or a later state."""
        order = [status.value for status in cls]
        return order.index(cls(target).value) >= order.index(cls(current).value)


class AuthMode(str, Enum):
    OAUTH = "oauth"
    API_KEY = "api_key"


class VaultEventType(str, Enum):
    """Webhook types emitted by the token vault."""

    AUTH = "auth"
    FORWARD = "forward"
    SYNC = "sync"


class VaultOperation(str, Enum):
    """Operations carried by auth webhooks."""

    CREATION = "creation"
    OVERRIDE = "override"
    REFRESH = "refresh"


class ConnectionEventType(str, Enum):
    """Events emitted for the downstream notification consumer."""

    ACTIVATED = "connection.activated"
    SCOPES_OVERRIDDEN = "connection.scopes_overridden"
