"""
Base service with session ownership and transaction handling.

Services that cooperate on one logical operation share a session. The
transaction scope is re-entrant on that session: only the outermost scope
commits, and any failure rolls the whole session back before the error
propagates.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.orm import Session

from ..db.db_config import get_db_manager
from ..utils.logger import get_logger

_DEPTH_KEY = "transaction_depth"


class SessionManagedService:
    """
    Service that owns, or borrows, a database session.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            session: Optional existing session (for testing or coordination)
            logger: Optional logger instance
        """
        if session is not None:
            self.session = session
            self._owns_session = False
        else:
            self.session = self._create_session()
            self._owns_session = True

        self.logger = logger or get_logger()

    def _create_session(self) -> Session:
        """Create a new database session from the global database manager."""
        return get_db_manager().session_factory()

    @contextmanager
    def transaction(self):
        """
        Context manager for transactional operations.

        Usage:
            with service.transaction():
                service.create_something()
                service.update_something()
                # Auto-commits on success, rollback on exception
        """
        depth = self.session.info.get(_DEPTH_KEY, 0)
        self.session.info[_DEPTH_KEY] = depth + 1
        try:
            yield self.session
            if depth == 0:
                self.session.commit()
        except Exception:
            if depth == 0:
                self.session.rollback()
            raise
        finally:
            self.session.info[_DEPTH_KEY] = depth

    @property
    def in_transaction(self) -> bool:
        return self.session.info.get(_DEPTH_KEY, 0) > 0

    def commit(self):
        """Manually commit the current transaction."""
        self.session.commit()

    def rollback(self):
        """Manually rollback the current transaction."""
        self.session.rollback()

    def close(self):
        """Close the session if we own it."""
        if self._owns_session and self.session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Auto-close session on exit."""
        if exc_type:
            self.rollback()
        self.close()
