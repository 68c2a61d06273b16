"""Pydantic schemas for the connection broker."""

from .connection_schemas import (
    AuthorizationStart,
    ConnectionCreate,
    ConnectionEvent,
    ConnectionFilter,
    ConnectionRead,
    ConnectionRequest,
    ReconnectRequest,
)
from .delegation_schemas import DelegationClaims
from .issuance_schemas import AccessArtifact, IssuanceRequest
from .vault_schemas import AccessMaterial, AuthorizationSession, VaultEndUser, VaultEvent

__all__ = [
    "AccessArtifact",
    "AccessMaterial",
    "AuthorizationSession",
    "AuthorizationStart",
    "ConnectionCreate",
    "ConnectionEvent",
    "ConnectionFilter",
    "ConnectionRead",
    "ConnectionRequest",
    "DelegationClaims",
    "IssuanceRequest",
    "ReconnectRequest",
    "VaultEndUser",
    "VaultEvent",
]
