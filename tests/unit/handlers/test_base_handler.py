"""
Tests for HandlerResponse error mapping and BaseHandler body parsing.
"""

import logging

import pytest

from connection_broker.exceptions import (
    ErrorCode,
    InvalidStateError,
    ScopeViolationError,
    ValidationError,
)
from connection_broker.handlers.base_handler import (
    INTERNAL_ERROR_MESSAGE,
    BaseHandler,
    HandlerResponse,
)


class TestHandlerResponse:
    """Test error to response mapping."""

    def test_base_error_maps_status_and_message(self):
        response = HandlerResponse.from_error(ScopeViolationError(["admin"]))

        assert response.status_code == 403
        assert response.body == {
            "success": False,
            "error": "Unauthorized scopes requested: admin",
        }

    def test_invalid_state_carries_status(self):
        response = HandlerResponse.from_error(InvalidStateError("revoked"))

        assert response.status_code == 400
        assert response.body["status"] == "revoked"

    def test_debug_mode_adds_detail(self):
        """Test debug mode attaches error detail with the cause."""
        cause = KeyError("provider")
        error = ValidationError("Bad input", field="provider", cause=cause)

        response = HandlerResponse.from_error(error, debug=True)

        detail = response.body["detail"]
        assert detail["code"] == ErrorCode.VALIDATION_FAILED.value
        assert detail["context"]["field"] == "provider"
        assert detail["cause"]["type"] == "KeyError"

    def test_unknown_error_is_generic(self, caplog):
        """Test unknown errors become a generic 500."""
        with caplog.at_level(logging.ERROR):
            response = HandlerResponse.from_error(RuntimeError("db password is hunter2"))

        assert response.status_code == 500
        assert response.body == {"success": False, "error": INTERNAL_ERROR_MESSAGE}
        assert "hunter2" not in str(response.body)

    def test_unknown_error_in_debug_mode(self):
        response = HandlerResponse.from_error(RuntimeError("boom"), debug=True)

        assert response.body["detail"] == {"type": "RuntimeError", "message": "boom"}


class TestParseBody:
    """Test request body parsing."""

    @pytest.mark.parametrize("raw,expected", [
        (None, {}),
        ("", {}),
        (b'{"a": 1}', {"a": 1}),
        ('{"a": "b"}', {"a": "b"}),
        ({"already": "decoded"}, {"already": "decoded"}),
    ])
    def test_accepted_bodies(self, raw, expected):
        assert BaseHandler.parse_body(raw) == expected

    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc_info:
            BaseHandler.parse_body("{not json")

        assert exc_info.value.error_code == ErrorCode.INVALID_FORMAT

    def test_non_object_json(self):
        with pytest.raises(ValidationError) as exc_info:
            BaseHandler.parse_body("[1, 2]")

        assert exc_info.value.message == "Request body must be a JSON object"


class TestSessionScope:
    """Test per-request session handling."""

    def test_injected_session_is_not_closed(self, app_config, db_session):
        handler = BaseHandler(session=db_session, config=app_config)

        with handler.session_scope() as session:
            assert session is db_session

        assert db_session.is_active
