"""Transport-agnostic request handlers."""

from .base_handler import BaseHandler, HandlerResponse
from .connection_handler import ConnectionHandler
from .issuance_handler import IssuanceHandler
from .webhook_handler import WebhookHandler

__all__ = [
    "BaseHandler",
    "ConnectionHandler",
    "HandlerResponse",
    "IssuanceHandler",
    "WebhookHandler",
]
