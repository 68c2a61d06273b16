"""Utility modules for the connection broker."""

from .connection_utils import encode_base58, generate_event_id
from .logger import AzureQueueHandler, ContextAwareLogger, configure_logging, get_logger
from .scope_utils import authorize_scopes, default_scopes_for, normalize_scopes, scopes_to_string

__all__ = [
    # Logging utilities
    "AzureQueueHandler",
    "ContextAwareLogger",
    "configure_logging",
    "get_logger",
    # Scope utilities
    "authorize_scopes",
    "default_scopes_for",
    "normalize_scopes",
    "scopes_to_string",
    # Identifiers
    "encode_base58",
    "generate_event_id",
]
