"""
Access issuance: exchange a delegation token for short-lived provider access.

The flow runs in a single transaction. Each check short-circuits the rest and
rolls back anything written so far, including the consumed token id.
"""

import math
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import IssuanceConfig, get_config
from ..context.operation_context import operation
from ..db.db_base import as_utc, utc_now
from ..db.db_connection_models import Connection
from ..enums import ConnectionStatus
from ..exceptions import (
    AccessMaterialNotFoundError,
    BaseError,
    ConnectionNotFoundError,
    ErrorCode,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
    ServiceError,
    VersionConflictError,
)
from ..schemas.delegation_schemas import DelegationClaims
from ..schemas.issuance_schemas import AccessArtifact
from ..schemas.vault_schemas import AccessMaterial
from ..utils.scope_utils import authorize_scopes
from .base_service import SessionManagedService
from .connection_service import ConnectionService
from .delegation_token_service import DelegationTokenValidator
from .token_replay_service import TokenReplayService
from .vault_service import VaultService


class AccessIssuanceService(SessionManagedService):
    """
    Orchestrates token validation, connection checks, scope authorization and
    the vault lookup for one issuance request.
    """

    def __init__(
        self,
        token_validator: DelegationTokenValidator,
        vault: VaultService,
        session: Optional[Session] = None,
        connection_service: Optional[ConnectionService] = None,
        replay_service: Optional[TokenReplayService] = None,
        config: Optional[IssuanceConfig] = None,
        logger=None,
    ):
        super().__init__(session=session, logger=logger)
        self.token_validator = token_validator
        self.vault = vault
        self.config = config or get_config().issuance
        self.connections = connection_service or ConnectionService(session=self.session)
        self.replay = replay_service or TokenReplayService(session=self.session)

    @operation()
    def issue(
        self,
        tenant_id: str,
        connection_id: str,
        delegation_token: str,
        min_ttl_seconds: Optional[int] = None,
    ) -> AccessArtifact:
        """
        Issue an access artifact for a connection.

        Args:
            tenant_id: Tenant id from the request path
            connection_id: Connection id from the request path
            delegation_token: Signed delegation token presented by the caller
            min_ttl_seconds: Remaining lifetime below which a refresh is attempted

        Raises:
            ConnectionNotFoundError, AccessMaterialNotFoundError: 404
            ForbiddenError, ScopeViolationError: 403
            InvalidStateError, VersionConflictError: 400
            DelegationTokenError subclasses: 401
            ExternalServiceError: 502/504
        """
        if min_ttl_seconds is None:
            min_ttl_seconds = self.config.default_min_ttl_seconds

        try:
            with self.transaction():
                return self._issue(tenant_id, connection_id, delegation_token, min_ttl_seconds)
        except BaseError:
            raise
        except SQLAlchemyError as e:
            raise ServiceError(
                "Failed to issue access token",
                error_code=ErrorCode.DATABASE_ERROR,
                operation="issue",
                connection_id=connection_id,
                cause=e,
            ) from e

    def _issue(
        self, tenant_id: str, connection_id: str, delegation_token: str, min_ttl_seconds: int
    ) -> AccessArtifact:
        connection = self.connections.get_connection_by_id(connection_id)
        if connection is None or connection.tenant_id != tenant_id:
            raise ConnectionNotFoundError(connection_id=connection_id)

        claims = self.token_validator.validate(delegation_token, tenant_id, connection_id)
        scopes = self._authorize(connection, claims)

        if self.config.enforce_single_use:
            self.replay.consume(
                claims.jti,
                tenant_id=connection.tenant_id,
                connection_id=connection.id,
                token_expires_at=datetime.fromtimestamp(claims.exp, tz=UTC),
            )

        material = None
        if connection.provider_connection_id:
            material = self.vault.get_access_material(
                connection.provider, connection.provider_connection_id
            )
        if material is None:
            raise AccessMaterialNotFoundError(connection_id=connection.id)

        remaining = self._remaining_lifetime(material)
        if self.config.refresh_on_low_ttl and (remaining <= 0 or remaining < min_ttl_seconds):
            material, remaining = self._refresh(connection, material, remaining)
        if remaining <= 0:
            raise AccessMaterialNotFoundError(
                "Access token has expired", connection_id=connection.id
            )

        self._touch(connection)

        self.logger.info(
            "Access token issued",
            extra={
                "connection_id": connection.id,
                "provider": connection.provider,
                "scopes": scopes,
                "expires_in": remaining,
            },
        )
        return AccessArtifact(
            access_token=material.access_token,
            expires_in=remaining,
            scopes=scopes,
            vendor=self._vendor_block(connection),
        )

    def _authorize(self, connection: Connection, claims: DelegationClaims) -> List[str]:
        if claims.sub != connection.subject:
            raise ForbiddenError(
                "connection does not belong to authenticated subject",
                connection_id=connection.id,
            )
        if claims.tid != connection.tenant_id:
            raise ForbiddenError(
                "Connection does not belong to token tenant", connection_id=connection.id
            )
        if connection.status != ConnectionStatus.ACTIVE.value:
            raise InvalidStateError(connection.status, connection_id=connection.id)
        if claims.cver is not None and claims.cver != connection.authorization_version:
            raise VersionConflictError(
                connection_id=connection.id,
                token_version=claims.cver,
                current_version=connection.authorization_version,
            )
        return authorize_scopes(claims.scopes, connection.authorized_scopes or [])

    def _remaining_lifetime(self, material: AccessMaterial) -> int:
        if material.expires_at is None:
            return self.config.default_lifetime_seconds
        seconds = (as_utc(material.expires_at) - utc_now()).total_seconds()
        return max(0, math.floor(seconds))

    def _refresh(
        self, connection: Connection, material: AccessMaterial, remaining: int
    ) -> Tuple[AccessMaterial, int]:
        """Best-effort refresh; the current material is kept while it is still valid."""
        try:
            refreshed = self.vault.refresh_access_material(
                connection.provider, connection.provider_connection_id
            )
        except ExternalServiceError:
            self.logger.warning(
                "Access token refresh failed",
                extra={"connection_id": connection.id, "remaining_seconds": remaining},
            )
            if remaining <= 0:
                raise
            return material, remaining

        if refreshed is None:
            self.logger.warning(
                "Vault returned no token on refresh", extra={"connection_id": connection.id}
            )
            if remaining <= 0:
                raise AccessMaterialNotFoundError(connection_id=connection.id)
            return material, remaining

        return refreshed, self._remaining_lifetime(refreshed)

    def _touch(self, connection: Connection) -> None:
        """
        Record the access, guarded on the status and version read at the start.

        A revoke or override committed since then makes the update miss, and
        the issuance fails instead of handing out material for a stale grant.
        """
        version = connection.authorization_version
        updated = (
            self.session.query(Connection)
            .filter(
                Connection.id == connection.id,
                Connection.status == ConnectionStatus.ACTIVE.value,
                Connection.authorization_version == version,
            )
            .update({Connection.last_accessed_at: utc_now()})
        )
        if updated:
            return

        current = self.connections.lock_connection(connection.id)
        if current is None:
            raise ConnectionNotFoundError(connection_id=connection.id)
        if current.status != ConnectionStatus.ACTIVE.value:
            raise InvalidStateError(current.status, connection_id=connection.id)
        raise VersionConflictError(
            connection_id=connection.id,
            token_version=version,
            current_version=current.authorization_version,
        )

    @staticmethod
    def _vendor_block(connection: Connection) -> Dict[str, Any]:
        account = dict(connection.provider_account or {})
        return {
            "accountId": account.get("accountId") or account.get("account_id"),
            "displayName": account.get("displayName") or account.get("display_name"),
            **account,
        }
