"""
Pydantic schemas for connections.

ConnectionRead is the only shape that leaves the service boundary. It omits the
provider connection id, the provider account snapshot and the version counter.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..enums import AuthMode, ConnectionStatus, ConnectionEventType
from ..utils.scope_utils import normalize_scopes


class ConnectionCreate(BaseModel):
    """Input for creating a pending connection."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    tenant_id: str = Field(..., min_length=1, max_length=100)
    subject: str = Field(..., min_length=1, max_length=255)
    provider: str = Field(..., min_length=1, max_length=100)
    authorized_scopes: List[str] = Field(default_factory=list)
    auth_mode: AuthMode = AuthMode.OAUTH

    @field_validator("provider")
    @classmethod
    def lowercase_provider(cls, v: str) -> str:
        return v.lower()

    @field_validator("authorized_scopes")
    @classmethod
    def normalize(cls, v: List[str]) -> List[str]:
        return normalize_scopes(v)


class ConnectionRead(BaseModel):
    """Client-safe view of a connection."""

    id: str
    tenant_id: str
    subject: str
    provider: str
    status: ConnectionStatus
    scopes: List[str]
    auth_mode: str
    last_accessed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_connection(cls, connection) -> "ConnectionRead":
        return cls(
            id=connection.id,
            tenant_id=connection.tenant_id,
            subject=connection.subject,
            provider=connection.provider,
            status=connection.status,
            scopes=list(connection.authorized_scopes or []),
            auth_mode=connection.auth_mode,
            last_accessed_at=connection.last_accessed_at,
            created_at=connection.created_at,
            updated_at=connection.updated_at,
        )


class ConnectionFilter(BaseModel):
    """Optional filters for connection listings."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: Optional[str] = None
    subject: Optional[str] = None
    provider: Optional[str] = None
    status: Optional[ConnectionStatus] = None


class AuthorizationStart(BaseModel):
    """Result of starting (or restarting) an end-user authorization."""

    connection_id: str
    authorization_url: str


class ConnectionEvent(BaseModel):
    """Lifecycle event handed to the downstream notification consumer."""

    type: ConnectionEventType
    event_id: str
    connection_id: str
    tenant_id: str
    subject: str
    provider: str
    authorized_scopes: List[str]
    authorization_version: int


class ConnectionRequest(BaseModel):
    """Body of a request to connect a provider."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    provider: str = Field(..., min_length=1, max_length=100)
    scopes: Optional[Union[str, List[str]]] = None


class ReconnectRequest(BaseModel):
    """Body of a request to re-authorize an existing connection."""

    model_config = ConfigDict(extra="ignore")

    scopes: Optional[Union[str, List[str]]] = None
