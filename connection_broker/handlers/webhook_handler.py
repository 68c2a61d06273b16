"""
Handler for webhooks delivered by the token vault.

Signature and payload shape problems are reported back to the vault. Failures
while applying a well-formed event are logged and acknowledged with 200 so the
vault does not keep redelivering an event that cannot be processed.
"""

from contextlib import nullcontext
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..context.operation_context import operation
from ..context.tenant_context import tenant_context
from ..enums import VaultEventType
from ..exceptions import BaseError, ValidationError, WebhookError
from ..schemas.connection_schemas import ConnectionEvent
from ..schemas.vault_schemas import VaultEvent
from ..services.lifecycle_service import ConnectionLifecycleService
from ..services.vault_service import VaultService
from .base_handler import BaseHandler, HandlerResponse

PROCESSING_ERROR_MESSAGE = "Internal server error processing webhook"


class WebhookHandler(BaseHandler):
    """POST /webhooks/vault"""

    def __init__(
        self,
        vault: VaultService,
        event_sink: Optional[Callable[[ConnectionEvent], None]] = None,
        session=None,
        config=None,
        logger=None,
    ):
        """
        Args:
            vault: Vault client, used to verify webhook signatures
            event_sink: Optional consumer of lifecycle events produced by the webhook
        """
        super().__init__(session=session, config=config, logger=logger)
        self.vault = vault
        self.event_sink = event_sink

    @operation(name="handle_vault_webhook")
    def handle(self, signature: Optional[str], raw_body: bytes) -> HandlerResponse:
        if not self.vault.verify_webhook_signature(signature, raw_body):
            self.logger.warning("Rejected vault webhook with invalid signature")
            return HandlerResponse(
                status_code=401,
                body={"success": False, "error": "Invalid webhook signature"},
            )

        try:
            payload = self.parse_body(raw_body)
            event = self._validate(payload)
        except (ValidationError, WebhookError) as e:
            return self._rejected(e)

        try:
            connection_event = self._dispatch(event)
        except WebhookError as e:
            return self._rejected(e)
        except Exception as e:
            self.logger.error(
                "Failed to process vault webhook",
                extra={"webhook_type": event.type, "operation": event.operation},
                exc_info=not isinstance(e, BaseError),
            )
            return HandlerResponse.ok(
                {
                    "received": True,
                    "processed": False,
                    "success": False,
                    "error": PROCESSING_ERROR_MESSAGE,
                    "timestamp": self.timestamp(),
                }
            )

        body: Dict[str, Any] = {"received": True, "processed": True}
        if connection_event is not None:
            body["eventId"] = connection_event.event_id
        return HandlerResponse.ok(body)

    @staticmethod
    def _validate(payload: Dict[str, Any]) -> VaultEvent:
        event_type = payload.get("type")
        if not event_type:
            raise WebhookError("Missing webhook type")
        if not payload.get("connectionId") and event_type != VaultEventType.FORWARD.value:
            raise WebhookError("Missing connectionId", webhook_type=event_type)
        try:
            return VaultEvent.model_validate(payload)
        except PydanticValidationError as e:
            raise WebhookError(
                "Invalid webhook payload",
                webhook_type=event_type,
                validation_errors=e.errors(include_url=False, include_context=False),
                cause=e,
            ) from e

    def _dispatch(self, event: VaultEvent) -> Optional[ConnectionEvent]:
        if event.type != VaultEventType.AUTH.value:
            self.logger.info("Ignoring vault webhook", extra={"webhook_type": event.type})
            return None

        scope = tenant_context(event.tenant_id) if event.tenant_id else nullcontext()
        with scope, self.session_scope() as session:
            lifecycle = ConnectionLifecycleService(session=session)
            connection_event = lifecycle.process_vault_event(event)

        if connection_event is not None and self.event_sink is not None:
            self.event_sink(connection_event)
        return connection_event

    def _rejected(self, error: BaseError) -> HandlerResponse:
        return HandlerResponse(
            status_code=400,
            body={
                "received": True,
                "processed": False,
                "success": False,
                "error": error.message,
                "timestamp": self.timestamp(),
            },
        )
