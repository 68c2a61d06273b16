"""
Single-use enforcement for delegation tokens.

Each consumed jti is recorded in the caller's transaction and kept until its
retention window passes, which is never shorter than the longest lifetime a
delegation token may have. A second consumption of the same jti is rejected,
including when two requests race: the primary key turns the loser's insert
into an integrity error.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import DelegationConfig, get_config
from ..context.operation_context import operation
from ..db.db_base import as_utc, utc_now
from ..db.db_consumed_token_models import ConsumedDelegationToken
from ..exceptions import TokenReplayedError
from .base_service import SessionManagedService


class TokenReplayService(SessionManagedService):
    """Records consumed delegation token ids."""

    def __init__(
        self,
        session: Optional[Session] = None,
        config: Optional[DelegationConfig] = None,
        logger=None,
    ):
        super().__init__(session=session, logger=logger)
        self.config = config or get_config().delegation

    def consume(
        self, jti: str, tenant_id: str, connection_id: str, token_expires_at: datetime
    ) -> ConsumedDelegationToken:
        """
        Mark a token id as used.

        Participates in the surrounding transaction; a rolled back issuance
        leaves the token id unconsumed.

        Raises:
            TokenReplayedError: If the token id was already consumed
        """
        if self.is_consumed(jti):
            self._reject(jti, tenant_id, connection_id)

        now = utc_now()
        retention = max(
            as_utc(token_expires_at),
            now + timedelta(seconds=self.config.max_token_lifetime_seconds),
        )
        record = ConsumedDelegationToken(
            jti=jti,
            tenant_id=tenant_id,
            connection_id=connection_id,
            consumed_at=now,
            expires_at=retention,
        )
        try:
            with self.transaction():
                self.session.add(record)
                self.session.flush()
        except IntegrityError as e:
            self._reject(jti, tenant_id, connection_id, cause=e)
        return record

    def is_consumed(self, jti: str) -> bool:
        return (
            self.session.query(ConsumedDelegationToken.jti)
            .filter(ConsumedDelegationToken.jti == jti)
            .first()
            is not None
        )

    @operation()
    def cleanup_expired_tokens(self) -> int:
        """
        Delete consumed-token records whose retention window has passed.

        Returns:
            Number of records deleted
        """
        with self.transaction():
            deleted = (
                self.session.query(ConsumedDelegationToken)
                .filter(ConsumedDelegationToken.expires_at < utc_now())
                .delete(synchronize_session=False)
            )
        self.logger.info("Cleaned up consumed delegation tokens", extra={"deleted_count": deleted})
        return deleted

    def _reject(self, jti: str, tenant_id: str, connection_id: str, cause=None):
        self.logger.warning(
            "Delegation token replay rejected",
            extra={"jti": jti, "tenant_id": tenant_id, "connection_id": connection_id},
        )
        if cause is not None:
            raise TokenReplayedError(connection_id=connection_id, cause=cause) from cause
        raise TokenReplayedError(connection_id=connection_id)
