"""
Transport-agnostic request handling.

Handlers turn a parsed request into a HandlerResponse. They never raise: every
failure is mapped to a status code and a client-safe body. Internal detail is
only attached in debug mode.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import AppConfig, get_config
from ..db.db_config import get_db_manager
from ..exceptions import BaseError, ErrorCode, InvalidStateError, ValidationError
from ..utils.json_utils import loads
from ..utils.logger import get_logger

INTERNAL_ERROR_MESSAGE = "Internal server error"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class HandlerResponse(BaseModel):
    """Status code and JSON body to hand back to the transport."""

    status_code: int = Field(description="HTTP status code")
    body: Dict[str, Any] = Field(default_factory=dict, description="JSON response body")

    @classmethod
    def ok(cls, body: Dict[str, Any], status_code: int = 200) -> "HandlerResponse":
        return cls(status_code=status_code, body=body)

    @classmethod
    def from_error(
        cls, error: Exception, debug: bool = False, logger: Optional[logging.Logger] = None
    ) -> "HandlerResponse":
        """
        Map an exception to a failure response.

        BaseError subclasses carry their own status code and message. Anything
        else becomes a generic 500 and is logged with its traceback.
        """
        if isinstance(error, BaseError):
            body: Dict[str, Any] = {"success": False, "error": error.message}
            if isinstance(error, InvalidStateError):
                body["status"] = error.status
            if debug:
                body["detail"] = error.to_dict(include_cause=True, include_traceback=True)["error"]
            return cls(status_code=error.status_code, body=body)

        (logger or get_logger()).error(
            f"Unhandled error: {type(error).__name__}", exc_info=error
        )
        body = {"success": False, "error": INTERNAL_ERROR_MESSAGE}
        if debug:
            body["detail"] = {"type": type(error).__name__, "message": str(error)}
        return cls(status_code=500, body=body)


class BaseHandler:
    """
    Common plumbing for handlers: configuration, logging and a per-request session.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        config: Optional[AppConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            session: Optional existing session; a fresh one per request is used otherwise
            config: Optional configuration; the global one is used otherwise
            logger: Optional logger instance
        """
        self._session = session
        self.config = config or get_config()
        self.logger = logger or get_logger()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Yield the injected session, or a new one that is closed afterwards."""
        if self._session is not None:
            yield self._session
            return

        with get_db_manager().session_scope() as session:
            yield session

    def error_response(self, error: Exception) -> HandlerResponse:
        return HandlerResponse.from_error(error, debug=self.config.debug, logger=self.logger)

    @staticmethod
    def parse_body(body: Union[str, bytes, Dict[str, Any], None]) -> Dict[str, Any]:
        """
        Accept a raw JSON document or an already decoded mapping.

        Raises:
            ValidationError: If the body is not a JSON object
        """
        if body is None:
            return {}
        if isinstance(body, (str, bytes)):
            try:
                body = loads(body) if body else {}
            except ValueError as e:
                raise ValidationError(
                    "Request body is not valid JSON",
                    field="body",
                    error_code=ErrorCode.INVALID_FORMAT,
                    cause=e,
                ) from e
        if not isinstance(body, dict):
            raise ValidationError(
                "Request body must be a JSON object",
                field="body",
                error_code=ErrorCode.INVALID_FORMAT,
            )
        return body

    @staticmethod
    def timestamp() -> str:
        return _timestamp()
