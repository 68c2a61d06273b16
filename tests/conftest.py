"""
Shared test fixtures.

Database tests run against SQLite in memory with the real models. Only the
external token vault is replaced with mocks.
"""

import time
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import jwt
import pytest
from sqlalchemy.orm import Session

from connection_broker.config import (
    AppConfig,
    DelegationConfig,
    IssuanceConfig,
    LoggingConfig,
    QueueConfig,
    VaultConfig,
    reset_config,
    set_config,
)
from connection_broker.constants import ServiceIdentity
from connection_broker.context.tenant_context import TenantContext
from connection_broker.db import DatabaseConfig, DatabaseManager, import_all_models
from connection_broker.db.db_config import Base, initialize_db
from connection_broker.exceptions import clear_correlation_id
from connection_broker.schemas.vault_schemas import AccessMaterial, AuthorizationSession
from connection_broker.services.vault_service import VaultService
from tests.fixtures.factories import configure_factories

TEST_SIGNING_KEY = "test-delegation-signing-key-0123456789abcdef"
TEST_VAULT_SECRET = "test-vault-secret-key"


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    return initialize_db(db_config)


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Fresh tables and session for each test.

    Factories are bound to the same session so rows they create are visible
    to the services under test.
    """
    Base.metadata.create_all(db_manager.engine)
    session = db_manager.get_session()
    configure_factories(session)

    yield session

    session.rollback()
    session.close()
    db_manager.scoped_session.remove()
    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture(scope="function")
def delegation_config() -> DelegationConfig:
    return DelegationConfig(
        audience=ServiceIdentity.AUDIENCE,
        authorized_party=ServiceIdentity.AUTHORIZED_PARTY,
        issuer=ServiceIdentity.ISSUER,
        signing_key=TEST_SIGNING_KEY,
        algorithms=["HS256"],
    )


@pytest.fixture(scope="function")
def vault_config() -> VaultConfig:
    return VaultConfig(
        base_url="https://vault.test",
        secret_key=TEST_VAULT_SECRET,
        webhook_secret=None,
        auth_url="https://vault.test/oauth/connect",
        timeout_seconds=5,
    )


@pytest.fixture(scope="function")
def app_config(delegation_config, vault_config) -> AppConfig:
    """Explicit configuration installed as the global config for the test."""
    config = AppConfig(
        environment="test",
        debug=False,
        queue=QueueConfig(connection_string=""),
        logging=LoggingConfig(level="DEBUG", logs_queue_enabled=False),
        delegation=delegation_config,
        vault=vault_config,
        issuance=IssuanceConfig(),
    )
    set_config(config)
    yield config
    reset_config()


@pytest.fixture(autouse=True)
def clean_context():
    """Reset tenant and correlation context between tests."""
    yield
    TenantContext.clear_current_tenant()
    clear_correlation_id()


@pytest.fixture
def token_claims():
    """Build a valid claim set for a connection; ``None`` overrides drop a claim."""

    def _claims(tenant_id: str, connection_id: str, subject: str, scopes=None, **overrides):
        claims = {
            "aud": ServiceIdentity.AUDIENCE,
            "azp": ServiceIdentity.AUTHORIZED_PARTY,
            "iss": ServiceIdentity.ISSUER,
            "exp": int(time.time()) + 120,
            "jti": str(uuid.uuid4()),
            "tid": tenant_id,
            "cid": connection_id,
            "sub": subject,
            "scp": list(scopes) if scopes is not None else [],
        }
        claims.update(overrides)
        return {k: v for k, v in claims.items() if v is not None}

    return _claims


@pytest.fixture
def mint_token(token_claims):
    """Sign a delegation token with the test key."""

    def _mint(
        tenant_id: str,
        connection_id: str,
        subject: str,
        scopes=None,
        key: str = TEST_SIGNING_KEY,
        algorithm: str = "HS256",
        **overrides,
    ) -> str:
        claims = token_claims(tenant_id, connection_id, subject, scopes, **overrides)
        return jwt.encode(claims, key, algorithm=algorithm)

    return _mint


@pytest.fixture
def vault():
    """Vault client double holding a token valid for ten more minutes."""
    client = Mock(spec=VaultService)
    client.get_access_material.return_value = AccessMaterial(
        access_token="provider-access-token",
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
    )
    client.refresh_access_material.return_value = AccessMaterial(
        access_token="refreshed-access-token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    client.create_authorization_session.return_value = AuthorizationSession(token="session-token")
    client.create_reconnect_session.return_value = AuthorizationSession(token="reconnect-token")
    client.build_authorization_url.side_effect = (
        lambda provider, token: f"https://vault.test/oauth/connect/{provider}?connect_session_token={token}"
    )
    client.delete_connection.return_value = True
    client.verify_webhook_signature.return_value = True
    return client
