"""Handler for access issuance requests."""

from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..context.operation_context import operation
from ..context.tenant_context import tenant_context
from ..exceptions import ValidationError
from ..schemas.issuance_schemas import IssuanceRequest
from ..services.delegation_token_service import DelegationTokenValidator
from ..services.issuance_service import AccessIssuanceService
from ..services.token_replay_service import TokenReplayService
from ..services.vault_service import VaultService
from .base_handler import BaseHandler, HandlerResponse


class IssuanceHandler(BaseHandler):
    """
    POST /tenants/{tenant_id}/connections/{connection_id}/access

    The validator and vault client are process-wide and injected once; the
    database session is per request.
    """

    def __init__(
        self,
        token_validator: DelegationTokenValidator,
        vault: VaultService,
        session=None,
        config=None,
        logger=None,
    ):
        super().__init__(session=session, config=config, logger=logger)
        self.token_validator = token_validator
        self.vault = vault

    @operation(name="handle_issuance")
    def handle(
        self,
        tenant_id: str,
        connection_id: str,
        body: Union[str, bytes, Dict[str, Any], None],
    ) -> HandlerResponse:
        try:
            request = self._parse(body)
            with tenant_context(tenant_id), self.session_scope() as session:
                service = AccessIssuanceService(
                    self.token_validator,
                    self.vault,
                    session=session,
                    replay_service=TokenReplayService(
                        session=session, config=self.config.delegation
                    ),
                    config=self.config.issuance,
                )
                artifact = service.issue(
                    tenant_id,
                    connection_id,
                    request.delegation_token,
                    min_ttl_seconds=request.min_ttl_seconds,
                )
        except Exception as e:
            return self.error_response(e)

        return HandlerResponse.ok(artifact.to_response())

    def _parse(self, body: Union[str, bytes, Dict[str, Any], None]) -> IssuanceRequest:
        data = self.parse_body(body)
        try:
            return IssuanceRequest.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid issuance request",
                field="body",
                validation_errors=e.errors(include_url=False, include_context=False, include_input=False),
                cause=e,
            ) from e
