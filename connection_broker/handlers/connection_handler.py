"""Handler for end-user connection management requests."""

from typing import Any, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..context.operation_context import operation
from ..context.tenant_context import tenant_context
from ..exceptions import ValidationError
from ..schemas.connection_schemas import ConnectionFilter, ConnectionRequest, ReconnectRequest
from ..services.authorization_service import ConnectionAuthorizationService
from ..services.vault_service import VaultService
from .base_handler import BaseHandler, HandlerResponse

RequestBody = Union[str, bytes, Dict[str, Any], None]
M = TypeVar("M", bound=BaseModel)


class ConnectionHandler(BaseHandler):
    """
    Routes under /tenants/{tenant_id}/connections.

    Connection bodies only ever contain the filtered ConnectionRead fields.
    """

    def __init__(self, vault: VaultService, session=None, config=None, logger=None):
        super().__init__(session=session, config=config, logger=logger)
        self.vault = vault

    def _service(self, session) -> ConnectionAuthorizationService:
        return ConnectionAuthorizationService(self.vault, session=session)

    def _model(self, model: Type[M], body: RequestBody) -> M:
        try:
            return model.model_validate(self.parse_body(body))
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid connection request",
                field="body",
                validation_errors=e.errors(include_url=False, include_context=False),
                cause=e,
            ) from e

    @operation(name="handle_create_connection")
    def create(self, tenant_id: str, subject: str, body: RequestBody) -> HandlerResponse:
        try:
            request = self._model(ConnectionRequest, body)
            with tenant_context(tenant_id), self.session_scope() as session:
                start = self._service(session).initiate_authorization(
                    tenant_id, subject, request.provider, scopes=request.scopes
                )
        except Exception as e:
            return self.error_response(e)

        return HandlerResponse.ok(
            {
                "success": True,
                "connectionId": start.connection_id,
                "authorizationUrl": start.authorization_url,
                "timestamp": self.timestamp(),
            },
            status_code=201,
        )

    @operation(name="handle_update_connection")
    def update(
        self, tenant_id: str, connection_id: str, subject: str, body: RequestBody = None
    ) -> HandlerResponse:
        try:
            request = self._model(ReconnectRequest, body)
            with tenant_context(tenant_id), self.session_scope() as session:
                start = self._service(session).reconnect(
                    tenant_id, connection_id, subject, scopes=request.scopes
                )
        except Exception as e:
            return self.error_response(e)

        return HandlerResponse.ok(
            {
                "success": True,
                "connectionId": start.connection_id,
                "authorizationUrl": start.authorization_url,
                "timestamp": self.timestamp(),
            }
        )

    @operation(name="handle_delete_connection")
    def delete(
        self, tenant_id: str, connection_id: str, subject: Optional[str] = None
    ) -> HandlerResponse:
        try:
            with tenant_context(tenant_id), self.session_scope() as session:
                connection = self._service(session).disconnect(tenant_id, connection_id, subject)
        except Exception as e:
            return self.error_response(e)

        return HandlerResponse.ok(
            {
                "success": True,
                "connection": connection.model_dump(mode="json"),
                "timestamp": self.timestamp(),
            }
        )

    def get(
        self, tenant_id: str, connection_id: str, subject: Optional[str] = None
    ) -> HandlerResponse:
        try:
            with tenant_context(tenant_id), self.session_scope() as session:
                connection = self._service(session).get_connection(
                    tenant_id, connection_id, subject
                )
        except Exception as e:
            return self.error_response(e)

        return HandlerResponse.ok(
            {
                "success": True,
                "connection": connection.model_dump(mode="json"),
                "timestamp": self.timestamp(),
            }
        )

    def list(
        self,
        tenant_id: str,
        subject: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> HandlerResponse:
        try:
            connection_filter = self._model(ConnectionFilter, filters or {})
            with tenant_context(tenant_id), self.session_scope() as session:
                connections = self._service(session).list_connections(
                    tenant_id, subject=subject, filters=connection_filter
                )
        except Exception as e:
            return self.error_response(e)

        return HandlerResponse.ok(
            {
                "success": True,
                "connections": [c.model_dump(mode="json") for c in connections],
                "count": len(connections),
                "timestamp": self.timestamp(),
            }
        )
