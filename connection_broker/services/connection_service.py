"""
Connection store with direct SQLAlchemy access.

This module owns every read and write of connection rows. Lifecycle rules live
in the lifecycle service; the store only guarantees that scope changes always
bump the authorization version and that writes happen under a row lock.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..context.operation_context import operation
from ..db.db_connection_models import Connection
from ..enums import AuthMode, ConnectionStatus
from ..exceptions import (
    BaseError,
    DuplicateConnectionError,
    ErrorCode,
    InvalidStateError,
    ServiceError,
    ValidationError,
)
from ..schemas.connection_schemas import ConnectionCreate, ConnectionFilter
from ..utils.scope_utils import normalize_scopes
from .base_service import SessionManagedService

# Columns callers may never patch directly
_MANAGED_COLUMNS = frozenset({"id", "authorization_version", "created_at", "updated_at"})


class ConnectionService(SessionManagedService):
    """
    Connection store.

    Reads return ORM rows so that the lifecycle and issuance services can
    mutate them inside their own transaction.
    """

    def __init__(self, session: Optional[Session] = None, logger=None):
        super().__init__(session=session, logger=logger)

    @operation()
    def create_connection(
        self,
        tenant_id: str,
        subject: str,
        provider: str,
        authorized_scopes: Optional[List[str]] = None,
        auth_mode: Union[AuthMode, str] = AuthMode.OAUTH,
    ) -> Connection:
        """
        Create a pending connection.

        Raises:
            ValidationError: If the input is malformed
            DuplicateConnectionError: If the triple already has a pending or active row
        """
        try:
            data = ConnectionCreate(
                tenant_id=tenant_id,
                subject=subject,
                provider=provider,
                authorized_scopes=authorized_scopes or [],
                auth_mode=auth_mode,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid connection data",
                field="connection",
                validation_errors=e.errors(include_url=False, include_context=False),
                cause=e,
            ) from e

        try:
            with self.transaction():
                connection = Connection(
                    tenant_id=data.tenant_id,
                    subject=data.subject,
                    provider=data.provider,
                    authorized_scopes=data.authorized_scopes,
                    auth_mode=data.auth_mode.value,
                    status=ConnectionStatus.PENDING.value,
                    authorization_version=1,
                )
                self.session.add(connection)
                self.session.flush()
        except IntegrityError as e:
            raise DuplicateConnectionError(
                tenant_id=data.tenant_id, provider=data.provider, cause=e
            ) from e
        except SQLAlchemyError as e:
            raise ServiceError(
                "Failed to create connection",
                error_code=ErrorCode.DATABASE_ERROR,
                operation="create_connection",
                tenant_id=data.tenant_id,
                cause=e,
            ) from e

        self.logger.info(
            "Created connection",
            extra={
                "connection_id": connection.id,
                "tenant_id": connection.tenant_id,
                "provider": connection.provider,
                "scopes": connection.authorized_scopes,
            },
        )
        return connection

    def get_connection_by_id(self, connection_id: str) -> Optional[Connection]:
        return self.session.query(Connection).filter(Connection.id == connection_id).first()

    def lock_connection(self, connection_id: str) -> Optional[Connection]:
        """Read a connection with a row lock, refreshing any cached state."""
        return (
            self.session.query(Connection)
            .filter(Connection.id == connection_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def find_live_connection(
        self, tenant_id: str, subject: str, provider: str, lock: bool = False
    ) -> Optional[Connection]:
        """Newest pending or active connection for a tenant/subject/provider triple."""
        query = (
            self.session.query(Connection)
            .filter(
                Connection.tenant_id == tenant_id,
                Connection.subject == subject,
                Connection.provider == provider.lower(),
                Connection.status.in_(ConnectionStatus.live_statuses()),
            )
            .order_by(Connection.created_at.desc())
        )
        if lock:
            query = query.with_for_update().populate_existing()
        return query.first()

    def find_by_provider_connection_id(self, provider_connection_id: str) -> Optional[Connection]:
        return (
            self.session.query(Connection)
            .filter(Connection.provider_connection_id == provider_connection_id)
            .first()
        )

    def get_connections_by_tenant(
        self, tenant_id: str, filters: Optional[Union[ConnectionFilter, Dict[str, Any]]] = None
    ) -> List[Connection]:
        """All connections of a tenant, newest first."""
        query = self.session.query(Connection).filter(Connection.tenant_id == tenant_id)
        return self._apply_filters(query, filters).order_by(Connection.created_at.desc()).all()

    def get_connections_by_user(
        self, subject: str, filters: Optional[Union[ConnectionFilter, Dict[str, Any]]] = None
    ) -> List[Connection]:
        """All connections of an end user, newest first."""
        query = self.session.query(Connection).filter(Connection.subject == subject)
        return self._apply_filters(query, filters).order_by(Connection.created_at.desc()).all()

    @operation()
    def update_connection_where(
        self, matcher: Dict[str, Any], patch: Dict[str, Any]
    ) -> Optional[Connection]:
        """
        Lock the newest row matching ``matcher`` and apply ``patch`` to it.

        Returns:
            The updated connection, or None when nothing matches
        """
        self._check_columns(matcher)
        try:
            with self.transaction():
                connection = (
                    self.session.query(Connection)
                    .filter_by(**matcher)
                    .order_by(Connection.created_at.desc())
                    .with_for_update()
                    .populate_existing()
                    .first()
                )
                if connection is None:
                    return None
                self.apply_update(connection, patch)
                return connection
        except BaseError:
            raise
        except SQLAlchemyError as e:
            raise ServiceError(
                "Failed to update connection",
                error_code=ErrorCode.DATABASE_ERROR,
                operation="update_connection_where",
                cause=e,
            ) from e

    def apply_update(self, connection: Connection, patch: Dict[str, Any]) -> Connection:
        """
        Apply a patch to a locked connection row.

        Any change to the authorized scopes increments the authorization version.
        Status only moves forward: pending, active, revoked.

        Raises:
            ValidationError: If the patch names unknown, managed or invalid values
            InvalidStateError: If the status patch would move the connection backwards
        """
        self._check_columns(patch)
        managed = _MANAGED_COLUMNS.intersection(patch)
        if managed:
            raise ValidationError(
                f"Columns cannot be patched directly: {sorted(managed)}",
                field="patch",
            )
        if "status" in patch:
            self._check_transition(connection, patch["status"])

        for key, value in patch.items():
            if key == "authorized_scopes":
                connection.authorized_scopes = normalize_scopes(value)
                connection.authorization_version = (connection.authorization_version or 1) + 1
            elif key == "status":
                connection.status = ConnectionStatus(value).value
            else:
                setattr(connection, key, value)

        self.session.flush()
        return connection

    @staticmethod
    def _check_transition(connection: Connection, target: Any) -> None:
        try:
            forward = ConnectionStatus.is_forward(connection.status, target)
        except ValueError as e:
            raise ValidationError(
                f"Unknown connection status: {target}", field="status", value=target, cause=e
            ) from e
        if not forward:
            raise InvalidStateError(
                connection.status,
                message=f"Cannot move a {connection.status} connection to {ConnectionStatus(target).value}",
                connection_id=connection.id,
            )

    @staticmethod
    def _check_columns(values: Dict[str, Any]) -> None:
        unknown = set(values) - set(Connection.__table__.columns.keys())
        if unknown:
            raise ValidationError(f"Unknown connection fields: {sorted(unknown)}", field="fields")

    @staticmethod
    def _apply_filters(
        query: Query, filters: Optional[Union[ConnectionFilter, Dict[str, Any]]]
    ) -> Query:
        if filters is None:
            return query
        if isinstance(filters, dict):
            filters = ConnectionFilter(**filters)

        if filters.tenant_id:
            query = query.filter(Connection.tenant_id == filters.tenant_id)
        if filters.subject:
            query = query.filter(Connection.subject == filters.subject)
        if filters.provider:
            query = query.filter(Connection.provider == filters.provider.lower())
        if filters.status:
            query = query.filter(Connection.status == filters.status.value)
        return query
