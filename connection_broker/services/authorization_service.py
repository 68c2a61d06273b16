"""
End-user connection management: start, restart and tear down provider authorizations.
"""

from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..constants import CONNECT_ID_TAG, SCOPES_TAG
from ..context.operation_context import operation
from ..db.db_connection_models import Connection
from ..enums import ConnectionStatus
from ..exceptions import (
    ConnectionNotFoundError,
    DuplicateConnectionError,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
)
from ..schemas.connection_schemas import AuthorizationStart, ConnectionFilter, ConnectionRead
from ..utils.scope_utils import default_scopes_for, normalize_scopes, scopes_to_string
from .base_service import SessionManagedService
from .connection_service import ConnectionService
from .lifecycle_service import ConnectionLifecycleService
from .vault_service import SERVICE_NAME, VaultService


class ConnectionAuthorizationService(SessionManagedService):
    """
    Connection management on behalf of an end user.

    Rows are committed before the vault is contacted, so a failed vault call
    leaves a pending connection that the next attempt reuses.
    """

    def __init__(
        self,
        vault: VaultService,
        session: Optional[Session] = None,
        connection_service: Optional[ConnectionService] = None,
        lifecycle_service: Optional[ConnectionLifecycleService] = None,
        logger=None,
    ):
        super().__init__(session=session, logger=logger)
        self.vault = vault
        self.connections = connection_service or ConnectionService(session=self.session)
        self.lifecycle = lifecycle_service or ConnectionLifecycleService(
            session=self.session, connection_service=self.connections
        )

    @operation()
    def initiate_authorization(
        self,
        tenant_id: str,
        subject: str,
        provider: str,
        scopes: Optional[Union[str, List[str]]] = None,
    ) -> AuthorizationStart:
        """
        Create (or reuse) a pending connection and open a vault connect session for it.

        Raises:
            DuplicateConnectionError: If the user already has an active connection
        """
        provider = provider.strip().lower()
        requested = normalize_scopes(scopes) or default_scopes_for(provider)

        with self.transaction():
            connection = self.connections.find_live_connection(
                tenant_id, subject, provider, lock=True
            )
            if connection is not None and connection.status == ConnectionStatus.ACTIVE.value:
                raise DuplicateConnectionError(
                    tenant_id=tenant_id, provider=provider, connection_id=connection.id
                )

            if connection is None:
                connection = self.connections.create_connection(
                    tenant_id, subject, provider, authorized_scopes=requested
                )
            elif set(connection.authorized_scopes or []) != set(requested):
                connection = self.lifecycle.override_scopes(requested, connection_id=connection.id)
            connection_id = connection.id

        session = self.vault.create_authorization_session(
            subject=subject,
            tenant_id=tenant_id,
            provider=provider,
            scopes=requested,
            tags={CONNECT_ID_TAG: connection_id, SCOPES_TAG: scopes_to_string(requested)},
        )
        self.logger.info(
            "Authorization session created",
            extra={"connection_id": connection_id, "provider": provider, "scopes": requested},
        )
        return AuthorizationStart(
            connection_id=connection_id,
            authorization_url=self.vault.build_authorization_url(provider, session.token),
        )

    @operation()
    def reconnect(
        self,
        tenant_id: str,
        connection_id: str,
        subject: str,
        scopes: Optional[Union[str, List[str]]] = None,
    ) -> AuthorizationStart:
        """
        Restart authorization for an existing connection, optionally with new scopes.

        The stored scopes only change once the vault reports the override.
        """
        connection = self._owned(tenant_id, connection_id, subject)
        if connection.status == ConnectionStatus.REVOKED.value:
            raise InvalidStateError(connection.status, connection_id=connection.id)

        requested = normalize_scopes(scopes) or list(connection.authorized_scopes or [])
        if connection.provider_connection_id:
            session = self.vault.create_reconnect_session(
                provider=connection.provider,
                provider_connection_id=connection.provider_connection_id,
                subject=subject,
                tenant_id=tenant_id,
                scopes=requested,
                connection_id=connection.id,
            )
        else:
            session = self.vault.create_authorization_session(
                subject=subject,
                tenant_id=tenant_id,
                provider=connection.provider,
                scopes=requested,
                tags={CONNECT_ID_TAG: connection.id, SCOPES_TAG: scopes_to_string(requested)},
            )

        self.logger.info(
            "Reconnect session created",
            extra={"connection_id": connection.id, "scopes": requested},
        )
        return AuthorizationStart(
            connection_id=connection.id,
            authorization_url=self.vault.build_authorization_url(connection.provider, session.token),
        )

    @operation()
    def disconnect(
        self, tenant_id: str, connection_id: str, subject: Optional[str] = None
    ) -> ConnectionRead:
        """
        Delete the vault credentials, then revoke the connection.

        Raises:
            ExternalServiceError: If the vault refuses the deletion; the connection stays live
        """
        connection = self._owned(tenant_id, connection_id, subject)
        if connection.status == ConnectionStatus.REVOKED.value:
            return ConnectionRead.from_connection(connection)

        if connection.provider_connection_id:
            deleted = self.vault.delete_connection(
                connection.provider, connection.provider_connection_id
            )
            if not deleted:
                raise ExternalServiceError(
                    "Failed to delete connection from token vault",
                    service_name=SERVICE_NAME,
                    connection_id=connection.id,
                )

        connection = self.lifecycle.revoke(connection.id, tenant_id=tenant_id)
        return ConnectionRead.from_connection(connection)

    def get_connection(
        self, tenant_id: str, connection_id: str, subject: Optional[str] = None
    ) -> ConnectionRead:
        return ConnectionRead.from_connection(self._owned(tenant_id, connection_id, subject))

    def list_connections(
        self,
        tenant_id: str,
        subject: Optional[str] = None,
        filters: Optional[Union[ConnectionFilter, Dict[str, Any]]] = None,
    ) -> List[ConnectionRead]:
        """Connections of a tenant, optionally narrowed to one end user, newest first."""
        if isinstance(filters, dict):
            filters = ConnectionFilter(**filters)
        filters = filters or ConnectionFilter()
        if subject:
            filters = filters.model_copy(update={"subject": subject})
        rows = self.connections.get_connections_by_tenant(tenant_id, filters)
        return [ConnectionRead.from_connection(row) for row in rows]

    def _owned(self, tenant_id: str, connection_id: str, subject: Optional[str]) -> Connection:
        connection = self.connections.get_connection_by_id(connection_id)
        if connection is None or connection.tenant_id != tenant_id:
            raise ConnectionNotFoundError(connection_id=connection_id)
        if subject is not None and connection.subject != subject:
            raise ForbiddenError(
                "connection does not belong to authenticated subject",
                connection_id=connection_id,
            )
        return connection
