"""
Unit tests for database configuration and the global database manager.
"""

import os
from unittest.mock import patch

import pytest

from connection_broker.db import (
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    set_db_manager,
)
from connection_broker.exceptions import ErrorCode, ServiceError, ValidationError


class TestDatabaseConfig:
    """Test DatabaseConfig connection strings."""

    def test_sqlite_connection_string(self):
        config = DatabaseConfig(db_type="sqlite", database=":memory:")

        assert config.get_connection_string() == "sqlite:///:memory:"

    def test_postgres_connection_string(self):
        config = DatabaseConfig(
            database="connections_db", host="db", username="broker", password="pw"
        )

        assert config.get_connection_string() == "postgresql://broker:pw@db:5432/connections_db"

    def test_postgres_requires_credentials(self):
        config = DatabaseConfig(database="connections_db", host="db")

        with pytest.raises(ValidationError) as exc_info:
            config.get_connection_string()

        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED

    def test_unsupported_type(self):
        with pytest.raises(ValidationError):
            DatabaseConfig(db_type="oracle", database="x").get_connection_string()

    def test_repr_masks_password(self):
        config = DatabaseConfig(database="d", host="h", username="u", password="secret")

        assert "secret" not in repr(config)

    def test_development_config_from_environment(self):
        with patch.dict(os.environ, {"DEV_DB_PATH": "/tmp/broker.db"}):
            config = get_development_config()

        assert config.db_type == "sqlite"
        assert config.database == "/tmp/broker.db"
        assert config.development_mode is True

    def test_production_config_from_environment(self):
        env = {"DB_HOST": "pg", "DB_NAME": "conn", "DB_USER": "svc", "DB_PASSWORD": "pw"}
        with patch.dict(os.environ, env):
            config = get_production_config()

        assert config.get_connection_string() == "postgresql://svc:pw@pg:5432/conn"
        assert config.development_mode is False


class TestDatabaseManager:
    """Test the database manager and its global instance."""

    def test_drop_tables_only_in_development_mode(self):
        manager = DatabaseManager(DatabaseConfig(db_type="sqlite", database=":memory:"))

        with pytest.raises(ServiceError):
            manager.drop_tables()

        manager.close()

    def test_global_manager_lifecycle(self, db_manager):
        """Test set, get and close of the process-wide manager."""
        replacement = DatabaseManager(
            DatabaseConfig(db_type="sqlite", database=":memory:", development_mode=True)
        )
        try:
            set_db_manager(replacement)
            assert get_db_manager() is replacement

            close_db()

            with pytest.raises(ServiceError) as exc_info:
                get_db_manager()
            assert exc_info.value.error_code == ErrorCode.CONFIGURATION_ERROR
        finally:
            set_db_manager(db_manager)
