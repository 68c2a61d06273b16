"""Service layer for the connection broker."""

from .authorization_service import ConnectionAuthorizationService
from .base_service import SessionManagedService
from .connection_service import ConnectionService
from .delegation_token_service import DelegationTokenValidator
from .issuance_service import AccessIssuanceService
from .lifecycle_service import ConnectionLifecycleService
from .token_replay_service import TokenReplayService
from .vault_service import VaultService

__all__ = [
    "AccessIssuanceService",
    "ConnectionAuthorizationService",
    "ConnectionLifecycleService",
    "ConnectionService",
    "DelegationTokenValidator",
    "SessionManagedService",
    "TokenReplayService",
    "VaultService",
]
