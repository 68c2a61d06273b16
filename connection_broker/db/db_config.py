"""
Database configuration and the process-wide DatabaseManager.

Production runs on PostgreSQL; tests and local development use SQLite. Both
support the partial unique index that keeps one live connection per owner.
"""

import os
from contextlib import contextmanager
from typing import Any, Generator, Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker

from ..exceptions import ErrorCode, ServiceError, ValidationError
from ..utils.logger import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()

_DRIVERS = {"postgres": "postgresql", "postgresql": "postgresql", "sqlite": "sqlite"}


class DatabaseConfig(BaseModel):
    """
    Connection settings. ``url`` wins over the individual fields when set.
    """

    db_type: str = "postgres"
    database: str
    url: Optional[str] = Field(default=None, repr=False)
    host: Optional[str] = None
    port: str = "5432"
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
    development_mode: bool = False

    @field_validator("db_type")
    @classmethod
    def normalize_db_type(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def is_sqlite(self) -> bool:
        if self.url:
            return make_url(self.url).get_backend_name() == "sqlite"
        return self.db_type == "sqlite"

    def get_connection_string(self) -> str:
        """
        Render the SQLAlchemy URL.

        Raises:
            ValidationError: If required Postgres fields are missing or the type is unknown
        """
        if self.url:
            return self.url

        driver = _DRIVERS.get(self.db_type)
        if driver is None:
            raise ValidationError(
                f"Unsupported database type: {self.db_type}",
                error_code=ErrorCode.INVALID_FORMAT,
                field="db_type",
                value=self.db_type,
            )
        if driver == "sqlite":
            return URL.create("sqlite", database=self.database).render_as_string()

        if not all([self.host, self.database, self.username, self.password]):
            raise ValidationError(
                "Missing required Postgres configuration parameters",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="database_config",
                value={"host": self.host, "database": self.database, "username": self.username},
            )
        url = URL.create(
            driver,
            username=self.username,
            password=self.password,
            host=self.host,
            port=int(self.port),
            database=self.database,
        )
        return url.render_as_string(hide_password=False)


class DatabaseManager:
    """
    Owns the engine and the session factories for one database.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = self._create_engine()
        self.session_factory = sessionmaker(bind=self.engine)
        self.scoped_session = scoped_session(self.session_factory)

    def _create_engine(self) -> Engine:
        connection_string = self.config.get_connection_string()
        if self.config.is_sqlite:
            return create_engine(
                connection_string,
                echo=self.config.echo,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            connection_string,
            echo=self.config.echo,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=True,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if not self.config.development_mode:
            raise ServiceError(
                "Cannot drop tables: not in development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
                development_mode=self.config.development_mode,
            )
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        """Thread-scoped session, shared by callers on the same thread."""
        return self.scoped_session()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """A fresh session for one unit of work, always closed afterwards."""
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    def close(self) -> None:
        self.scoped_session.remove()
        self.engine.dispose()


def get_development_config() -> DatabaseConfig:
    """SQLite configuration for local runs; in memory unless DEV_DB_PATH is set."""
    return DatabaseConfig(
        db_type="sqlite",
        database=os.environ.get("DEV_DB_PATH", ":memory:"),
        echo=os.environ.get("DB_ECHO", "False").lower() == "true",
        development_mode=True,
    )


def get_production_config() -> DatabaseConfig:
    """
    Postgres configuration from the environment.

    DATABASE_URL takes precedence over the DB_* variables.
    """
    return DatabaseConfig(
        db_type="postgres",
        url=os.environ.get("DATABASE_URL") or None,
        host=os.environ.get("DB_HOST", "localhost"),
        port=os.environ.get("DB_PORT", "5432"),
        database=os.environ.get("DB_NAME", "connections_db"),
        username=os.environ.get("DB_USER", "postgres"),
        password=os.environ.get("DB_PASSWORD", ""),
        pool_size=int(os.environ.get("DB_POOL_SIZE", "5")),
        max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.environ.get("DB_POOL_TIMEOUT", "30")),
        echo=os.environ.get("DB_ECHO", "False").lower() == "true",
        development_mode=False,
    )


def import_all_models():
    """Register every model on ``Base.metadata``."""
    from sqlalchemy.orm import configure_mappers

    from .db_connection_models import Connection  # noqa
    from .db_consumed_token_models import ConsumedDelegationToken  # noqa

    configure_mappers()


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Raises:
        ServiceError: If initialize_db() has not been called
    """
    if _db_manager is None:
        raise ServiceError(
            "Database manager not initialized. Call initialize_db() first.",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            operation="get_db_manager",
        )
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    """Install a manager built elsewhere, e.g. by a test fixture."""
    global _db_manager
    _db_manager = manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Create the global manager and its tables.

    Args:
        config: Database settings; the production environment is read when omitted
    """
    global _db_manager

    config = config or get_production_config()
    get_logger().info("Initializing database", extra={"db_type": config.db_type})

    manager = DatabaseManager(config)
    import_all_models()
    manager.create_tables()

    _db_manager = manager
    return manager


def close_db() -> None:
    """Dispose of the global manager's engine."""
    global _db_manager
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None
