"""
Connection lifecycle state machine.

    pending --activate--> active --revoke--> revoked
       |                    |
       +---- override ------+   (scopes replaced, version + 1, status unchanged)

Every transition locks the row, validates the transition against the current
status and writes the new state inside one transaction.
"""

from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..db.db_connection_models import Connection
from ..enums import ConnectionEventType, ConnectionStatus, VaultEventType, VaultOperation
from ..exceptions import ConnectionNotFoundError, InvalidStateError, WebhookError
from ..schemas.connection_schemas import ConnectionEvent
from ..schemas.vault_schemas import VaultEvent
from ..utils.connection_utils import generate_event_id
from ..utils.scope_utils import normalize_scopes
from .base_service import SessionManagedService
from .connection_service import ConnectionService


class ConnectionLifecycleService(SessionManagedService):
    """Applies activation, revocation and scope override transitions."""

    def __init__(
        self,
        session: Optional[Session] = None,
        connection_service: Optional[ConnectionService] = None,
        logger=None,
    ):
        super().__init__(session=session, logger=logger)
        self.connections = connection_service or ConnectionService(session=self.session)

    def _locate(
        self,
        connection_id: Optional[str],
        subject: Optional[str],
        provider: Optional[str],
        tenant_id: Optional[str],
    ) -> Optional[Connection]:
        """Find and lock a connection by correlation tag, else by natural key."""
        if connection_id:
            connection = self.connections.lock_connection(connection_id)
            if connection is not None and tenant_id and connection.tenant_id != tenant_id:
                return None
            return connection
        if subject and provider and tenant_id:
            return self.connections.find_live_connection(tenant_id, subject, provider, lock=True)
        return None

    @operation()
    def activate(
        self,
        provider_connection_id: str,
        *,
        connection_id: Optional[str] = None,
        subject: Optional[str] = None,
        provider: Optional[str] = None,
        tenant_id: Optional[str] = None,
        provider_account: Optional[Dict[str, Any]] = None,
    ) -> Optional[Connection]:
        """
        Promote a pending connection to active once the vault completed the handshake.

        Activating an active connection is a no-op; revoked connections stay revoked.

        Returns:
            The connection, or None when no connection matches the event
        """
        connection, _ = self._activate(
            provider_connection_id, connection_id, subject, provider, tenant_id, provider_account
        )
        return connection

    def _activate(
        self,
        provider_connection_id: str,
        connection_id: Optional[str],
        subject: Optional[str],
        provider: Optional[str],
        tenant_id: Optional[str],
        provider_account: Optional[Dict[str, Any]],
    ) -> Tuple[Optional[Connection], bool]:
        with self.transaction():
            connection = self._locate(connection_id, subject, provider, tenant_id)
            if connection is None:
                self.logger.warning(
                    "Activation event matched no connection",
                    extra={
                        "connection_id": connection_id,
                        "provider": provider,
                        "tenant_id": tenant_id,
                        "provider_connection_id": provider_connection_id,
                    },
                )
                return None, False

            if connection.status != ConnectionStatus.PENDING.value:
                log = (
                    self.logger.warning
                    if connection.status == ConnectionStatus.REVOKED.value
                    else self.logger.info
                )
                log(
                    "Activation ignored",
                    extra={"connection_id": connection.id, "status": connection.status},
                )
                return connection, False

            patch: Dict[str, Any] = {
                "status": ConnectionStatus.ACTIVE.value,
                "provider_connection_id": provider_connection_id,
            }
            if provider_account:
                patch["provider_account"] = {**(connection.provider_account or {}), **provider_account}
            self.connections.apply_update(connection, patch)

        self.logger.info(
            "Connection activated",
            extra={"connection_id": connection.id, "provider": connection.provider},
        )
        return connection, True

    @operation()
    def revoke(self, connection_id: str, tenant_id: Optional[str] = None) -> Connection:
        """
        Mark a connection revoked. Callers tear down vault credentials first.

        Raises:
            ConnectionNotFoundError: If the connection does not exist
        """
        with self.transaction():
            connection = self._locate(connection_id, None, None, tenant_id)
            if connection is None:
                raise ConnectionNotFoundError(connection_id=connection_id)

            if connection.status == ConnectionStatus.REVOKED.value:
                return connection

            self.connections.apply_update(
                connection,
                {"status": ConnectionStatus.REVOKED.value, "revoked_at": utc_now()},
            )

        self.logger.info("Connection revoked", extra={"connection_id": connection.id})
        return connection

    @operation()
    def override_scopes(
        self,
        replacement_scopes: Union[str, List[str]],
        *,
        connection_id: Optional[str] = None,
        subject: Optional[str] = None,
        provider: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Connection:
        """
        Replace the authorized scopes and increment the authorization version by one.

        Raises:
            ConnectionNotFoundError: If no connection matches
            InvalidStateError: If the connection is revoked
        """
        with self.transaction():
            connection = self._locate(connection_id, subject, provider, tenant_id)
            if connection is None:
                raise ConnectionNotFoundError(connection_id=connection_id)

            if connection.status == ConnectionStatus.REVOKED.value:
                raise InvalidStateError(
                    connection.status,
                    message="Cannot override scopes of a revoked connection",
                    connection_id=connection.id,
                )

            self.connections.apply_update(
                connection, {"authorized_scopes": normalize_scopes(replacement_scopes)}
            )

        self.logger.info(
            "Connection scopes overridden",
            extra={
                "connection_id": connection.id,
                "authorization_version": connection.authorization_version,
                "scopes": connection.authorized_scopes,
            },
        )
        return connection

    @operation()
    def process_vault_event(self, event: VaultEvent) -> Optional[ConnectionEvent]:
        """
        Apply an ``auth`` webhook event from the vault.

        Returns:
            The event for the notification consumer, or None when nothing changed
        """
        if event.type != VaultEventType.AUTH.value:
            return None
        if not event.success:
            self.logger.warning(
                "Vault reported a failed authorization",
                extra={"operation": event.operation, "connection_tag": event.correlation_tag},
            )
            return None

        locator = {
            "connection_id": event.correlation_tag,
            "subject": event.subject,
            "provider": event.integration,
            "tenant_id": event.tenant_id,
        }

        if event.operation == VaultOperation.CREATION.value:
            if not event.connection_id:
                raise WebhookError("Missing connectionId")
            connection, changed = self._activate(
                event.connection_id,
                provider_account=event.connection_config or None,
                **locator,
            )
            if not changed:
                return None
            return self._event(ConnectionEventType.ACTIVATED, connection)

        if event.operation == VaultOperation.OVERRIDE.value:
            if event.replacement_scopes is None:
                raise WebhookError("Override event carries no scopes")
            connection = self.override_scopes(event.replacement_scopes, **locator)
            return self._event(ConnectionEventType.SCOPES_OVERRIDDEN, connection)

        self.logger.info("Ignoring vault auth operation", extra={"operation": event.operation})
        return None

    @staticmethod
    def _event(event_type: ConnectionEventType, connection: Connection) -> ConnectionEvent:
        return ConnectionEvent(
            type=event_type,
            event_id=generate_event_id(),
            connection_id=connection.id,
            tenant_id=connection.tenant_id,
            subject=connection.subject,
            provider=connection.provider,
            authorized_scopes=list(connection.authorized_scopes or []),
            authorization_version=connection.authorization_version,
        )
