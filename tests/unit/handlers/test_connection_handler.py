"""
Tests for ConnectionHandler response shapes.
"""

import pytest

from connection_broker.db import Connection
from connection_broker.exceptions import ExternalServiceError
from connection_broker.handlers.connection_handler import ConnectionHandler
from tests.fixtures.factories import ActiveConnectionFactory, ConnectionFactory

CLIENT_FIELDS = {
    "id",
    "tenant_id",
    "subject",
    "provider",
    "status",
    "scopes",
    "auth_mode",
    "last_accessed_at",
    "created_at",
    "updated_at",
}


@pytest.fixture
def handler(app_config, db_session, vault):
    return ConnectionHandler(vault, session=db_session, config=app_config)


class TestCreate:
    """Test the connect endpoint."""

    def test_created(self, handler, db_session):
        """Test the connect endpoint returns 201 with the authorization URL."""
        response = handler.create("T1", "U1", '{"provider": "github", "scopes": "repo gist"}')

        assert response.status_code == 201
        assert response.body["success"] is True
        assert response.body["authorizationUrl"].endswith("connect_session_token=session-token")
        connection = db_session.get(Connection, response.body["connectionId"])
        assert connection.authorized_scopes == ["repo", "gist"]
        assert "timestamp" in response.body

    def test_missing_provider(self, handler):
        response = handler.create("T1", "U1", "{}")

        assert response.status_code == 400
        assert response.body["error"] == "Invalid connection request"

    def test_duplicate(self, handler):
        ActiveConnectionFactory.create(tenant_id="T1", subject="U1", provider="github")

        response = handler.create("T1", "U1", {"provider": "github"})

        assert response.status_code == 409

    def test_vault_failure(self, handler, vault):
        """Test vault failures return a generic 502 body."""
        vault.create_authorization_session.side_effect = ExternalServiceError(
            "Token vault rejected connect session", service_name="vault"
        )

        response = handler.create("T1", "U1", {"provider": "github"})

        assert response.status_code == 502
        assert response.body == {"success": False, "error": "Token vault rejected connect session"}


class TestUpdate:
    """Test the reconnect endpoint."""

    def test_reconnect(self, handler):
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")

        response = handler.update("T1", active.id, "U1", {"scopes": ["repo", "gist"]})

        assert response.status_code == 200
        assert response.body["connectionId"] == active.id
        assert response.body["authorizationUrl"].endswith("connect_session_token=reconnect-token")

    def test_other_subject(self, handler):
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")

        response = handler.update("T1", active.id, "U2")

        assert response.status_code == 403


class TestDeleteAndRead:
    """Test delete, get and list endpoints."""

    def test_delete(self, handler, vault):
        """Test delete returns the filtered revoked connection."""
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")

        response = handler.delete("T1", active.id, "U1")

        assert response.status_code == 200
        assert response.body["connection"]["status"] == "revoked"
        assert set(response.body["connection"]) == CLIENT_FIELDS
        vault.delete_connection.assert_called_once()

    def test_delete_refused_by_vault(self, handler, vault):
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")
        vault.delete_connection.return_value = False

        response = handler.delete("T1", active.id, "U1")

        assert response.status_code == 502

    def test_get(self, handler):
        pending = ConnectionFactory.create(tenant_id="T1", subject="U1")

        response = handler.get("T1", pending.id, "U1")

        assert response.status_code == 200
        assert response.body["connection"]["id"] == pending.id
        assert set(response.body["connection"]) == CLIENT_FIELDS

    def test_get_other_tenant(self, handler):
        pending = ConnectionFactory.create(tenant_id="T1", subject="U1")

        assert handler.get("T2", pending.id).status_code == 404

    def test_list(self, handler):
        ActiveConnectionFactory.create(tenant_id="T1", subject="U1", provider="github")
        ConnectionFactory.create(tenant_id="T1", subject="U1", provider="slack")
        ConnectionFactory.create(tenant_id="T1", subject="U2", provider="github")

        response = handler.list("T1", subject="U1")

        assert response.status_code == 200
        assert response.body["count"] == 2
        assert {c["provider"] for c in response.body["connections"]} == {"github", "slack"}

    def test_list_rejects_unknown_filter(self, handler):
        """Test filtering on internal fields is rejected."""
        response = handler.list("T1", filters={"provider_connection_id": "vault-1"})

        assert response.status_code == 400
