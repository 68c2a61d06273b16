"""
Tests for ConnectionAuthorizationService.
"""

import pytest

from connection_broker.constants import CONNECT_ID_TAG, SCOPES_TAG
from connection_broker.db import Connection
from connection_broker.enums import ConnectionStatus
from connection_broker.exceptions import (
    ConnectionNotFoundError,
    DuplicateConnectionError,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
)
from connection_broker.schemas.connection_schemas import ConnectionFilter
from connection_broker.services.authorization_service import ConnectionAuthorizationService
from tests.fixtures.factories import (
    ActiveConnectionFactory,
    ConnectionFactory,
    RevokedConnectionFactory,
)


@pytest.fixture
def service(db_session, vault):
    return ConnectionAuthorizationService(vault, session=db_session)


class TestInitiateAuthorization:
    """Test starting a provider authorization."""

    def test_creates_pending_connection(self, service, vault, db_session):
        """Test a new pending connection and tagged vault session."""
        start = service.initiate_authorization("T1", "U1", "GitHub", scopes="repo, user")

        connection = db_session.get(Connection, start.connection_id)
        assert connection.status == ConnectionStatus.PENDING.value
        assert connection.provider == "github"
        assert connection.authorized_scopes == ["repo", "user"]
        assert connection.authorization_version == 1
        assert start.authorization_url == (
            "https://vault.test/oauth/connect/github?connect_session_token=session-token"
        )
        vault.create_authorization_session.assert_called_once_with(
            subject="U1",
            tenant_id="T1",
            provider="github",
            scopes=["repo", "user"],
            tags={CONNECT_ID_TAG: start.connection_id, SCOPES_TAG: "repo user"},
        )

    def test_default_scopes_for_provider(self, service, db_session):
        """Test provider defaults apply when no scopes are given."""
        start = service.initiate_authorization("T1", "U1", "google")

        connection = db_session.get(Connection, start.connection_id)
        assert connection.authorized_scopes == ["openid", "email", "profile"]

    def test_reuses_pending_connection(self, service, db_session):
        """Test a pending connection with the same scopes is reused unchanged."""
        pending = ConnectionFactory.create(tenant_id="T1", subject="U1", authorized_scopes=["repo"])

        start = service.initiate_authorization("T1", "U1", "github", scopes=["repo"])

        assert start.connection_id == pending.id
        assert db_session.query(Connection).count() == 1
        assert db_session.get(Connection, pending.id).authorization_version == 1

    def test_pending_connection_with_other_scopes_is_overridden(self, service, db_session):
        """Test a reused pending connection gets the new scopes and a new version."""
        pending = ConnectionFactory.create(tenant_id="T1", subject="U1", authorized_scopes=["repo"])

        start = service.initiate_authorization("T1", "U1", "github", scopes=["repo", "gist"])

        connection = db_session.get(Connection, start.connection_id)
        assert start.connection_id == pending.id
        assert connection.authorized_scopes == ["repo", "gist"]
        assert connection.authorization_version == 2
        assert connection.status == ConnectionStatus.PENDING.value

    def test_active_connection_is_a_duplicate(self, service, vault):
        """Test a second authorization for an active triple is rejected."""
        ActiveConnectionFactory.create(tenant_id="T1", subject="U1")

        with pytest.raises(DuplicateConnectionError) as exc_info:
            service.initiate_authorization("T1", "U1", "github")

        assert exc_info.value.status_code == 409
        vault.create_authorization_session.assert_not_called()

    def test_revoked_connection_does_not_block(self, service, db_session):
        """Test a revoked connection does not block a new one."""
        revoked = RevokedConnectionFactory.create(tenant_id="T1", subject="U1")

        start = service.initiate_authorization("T1", "U1", "github")

        assert start.connection_id != revoked.id
        assert db_session.query(Connection).count() == 2

    def test_vault_failure_keeps_pending_row(self, service, vault, db_session):
        """Test the pending row survives a vault failure."""
        vault.create_authorization_session.side_effect = ExternalServiceError(
            "down", service_name="vault"
        )

        with pytest.raises(ExternalServiceError):
            service.initiate_authorization("T1", "U1", "github")

        rows = db_session.query(Connection).all()
        assert len(rows) == 1
        assert rows[0].status == ConnectionStatus.PENDING.value


class TestReconnect:
    """Test re-authorizing an existing connection."""

    def test_active_connection_uses_reconnect_session(self, service, vault, db_session):
        """Test reconnect uses the vault connection id and leaves scopes alone."""
        active = ActiveConnectionFactory.create(
            tenant_id="T1", subject="U1", authorized_scopes=["repo"], provider_connection_id="vault-7"
        )

        start = service.reconnect("T1", active.id, "U1", scopes=["repo", "gist"])

        assert start.connection_id == active.id
        assert start.authorization_url.endswith("connect_session_token=reconnect-token")
        vault.create_reconnect_session.assert_called_once_with(
            provider="github",
            provider_connection_id="vault-7",
            subject="U1",
            tenant_id="T1",
            scopes=["repo", "gist"],
            connection_id=active.id,
        )
        reloaded = db_session.get(Connection, active.id)
        assert reloaded.authorized_scopes == ["repo"]
        assert reloaded.authorization_version == 1

    def test_pending_connection_opens_new_session(self, service, vault):
        """Test reconnect without a vault id opens a fresh tagged session."""
        pending = ConnectionFactory.create(tenant_id="T1", subject="U1", authorized_scopes=["repo"])

        service.reconnect("T1", pending.id, "U1")

        vault.create_reconnect_session.assert_not_called()
        _, kwargs = vault.create_authorization_session.call_args
        assert kwargs["scopes"] == ["repo"]
        assert kwargs["tags"] == {CONNECT_ID_TAG: pending.id, SCOPES_TAG: "repo"}

    def test_revoked_connection_cannot_reconnect(self, service):
        """Test a revoked connection cannot be re-authorized."""
        revoked = RevokedConnectionFactory.create(tenant_id="T1", subject="U1")

        with pytest.raises(InvalidStateError) as exc_info:
            service.reconnect("T1", revoked.id, "U1")

        assert exc_info.value.status == "revoked"

    def test_other_subject_is_forbidden(self, service):
        """Test reconnect by another subject is forbidden."""
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")

        with pytest.raises(ForbiddenError):
            service.reconnect("T1", active.id, "U2")

    def test_other_tenant_is_not_found(self, service):
        """Test reconnect across tenants is not found."""
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")

        with pytest.raises(ConnectionNotFoundError):
            service.reconnect("T2", active.id, "U1")


class TestDisconnect:
    """Test vault teardown and revocation."""

    def test_deletes_vault_credentials_then_revokes(self, service, vault, db_session):
        """Test disconnect tears down vault credentials and revokes."""
        active = ActiveConnectionFactory.create(
            tenant_id="T1", subject="U1", provider_connection_id="vault-3"
        )

        result = service.disconnect("T1", active.id, "U1")

        vault.delete_connection.assert_called_once_with("github", "vault-3")
        assert result.status == ConnectionStatus.REVOKED
        reloaded = db_session.get(Connection, active.id)
        assert reloaded.status == ConnectionStatus.REVOKED.value
        assert reloaded.revoked_at is not None

    def test_vault_refusal_leaves_connection_live(self, service, vault, db_session):
        """Test a refused vault deletion keeps the connection active."""
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")
        vault.delete_connection.return_value = False

        with pytest.raises(ExternalServiceError) as exc_info:
            service.disconnect("T1", active.id, "U1")

        assert exc_info.value.message == "Failed to delete connection from token vault"
        assert db_session.get(Connection, active.id).status == ConnectionStatus.ACTIVE.value

    def test_pending_connection_skips_vault(self, service, vault):
        """Test disconnect of a pending connection never calls the vault."""
        pending = ConnectionFactory.create(tenant_id="T1", subject="U1")

        result = service.disconnect("T1", pending.id)

        vault.delete_connection.assert_not_called()
        assert result.status == ConnectionStatus.REVOKED

    def test_already_revoked_is_idempotent(self, service, vault):
        """Test disconnecting a revoked connection is a no-op."""
        revoked = RevokedConnectionFactory.create(tenant_id="T1", subject="U1")

        result = service.disconnect("T1", revoked.id, "U1")

        assert result.status == ConnectionStatus.REVOKED
        vault.delete_connection.assert_not_called()

    def test_unknown_connection(self, service):
        """Test disconnecting a missing connection."""
        with pytest.raises(ConnectionNotFoundError):
            service.disconnect("T1", "missing")


class TestReads:
    """Test client-safe connection reads."""

    def test_get_connection_hides_vault_fields(self, service):
        """Test reads never expose vault fields or version counters."""
        active = ActiveConnectionFactory.create(tenant_id="T1", subject="U1")

        result = service.get_connection("T1", active.id, "U1")

        dumped = result.model_dump()
        assert dumped["id"] == active.id
        assert dumped["scopes"] == ["repo"]
        assert "provider_connection_id" not in dumped
        assert "provider_account" not in dumped
        assert "authorization_version" not in dumped

    def test_list_connections_for_subject(self, service):
        """Test listing is limited to the tenant and subject."""
        ActiveConnectionFactory.create(tenant_id="T1", subject="U1", provider="github")
        ConnectionFactory.create(tenant_id="T1", subject="U1", provider="slack")
        ConnectionFactory.create(tenant_id="T1", subject="U2", provider="github")
        ConnectionFactory.create(tenant_id="T2", subject="U1", provider="github")

        results = service.list_connections("T1", subject="U1")

        assert {r.provider for r in results} == {"github", "slack"}
        assert all(r.tenant_id == "T1" and r.subject == "U1" for r in results)

    def test_list_connections_with_filters(self, service):
        """Test dict and model filters."""
        ActiveConnectionFactory.create(tenant_id="T1", subject="U1", provider="github")
        ConnectionFactory.create(tenant_id="T1", subject="U2", provider="slack")

        results = service.list_connections("T1", filters={"status": "active"})
        assert [r.provider for r in results] == ["github"]

        results = service.list_connections("T1", filters=ConnectionFilter(provider="slack"))
        assert [r.subject for r in results] == ["U2"]
