"""
Connection model: one user's authorization of one provider within one tenant.

Just the data structure - transitions live in the lifecycle service.
"""

from sqlalchemy import Column, DateTime, Index, Integer, String, text

from ..enums import AuthMode, ConnectionStatus
from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base

# Only pending and active rows count towards the one-live-connection rule
_LIVE_ROWS = text("status IN ('pending', 'active')")


class Connection(Base, UUIDMixin, TimestampMixin):
    """Durable authorization record. Rows are revoked, never deleted."""

    __tablename__ = "connections"

    tenant_id = Column(String(100), nullable=False, index=True)
    subject = Column(String(255), nullable=False, index=True)
    provider = Column(String(100), nullable=False)

    # Assigned by the vault once the provider handshake completes
    provider_connection_id = Column(String(255), nullable=True, unique=True)
    provider_account = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=ConnectionStatus.PENDING.value)
    authorization_version = Column(Integer, nullable=False, default=1)
    authorized_scopes = Column(JSON, nullable=False, default=list)
    auth_mode = Column(String(50), nullable=False, default=AuthMode.OAUTH.value)

    last_accessed_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_connection_owner", "tenant_id", "subject", "provider"),
        Index(
            "uq_connection_live_owner",
            "tenant_id",
            "subject",
            "provider",
            unique=True,
            postgresql_where=_LIVE_ROWS,
            sqlite_where=_LIVE_ROWS,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"Connection(id='{self.id}', tenant_id='{self.tenant_id}', "
            f"provider='{self.provider}', status='{self.status}', "
            f"authorization_version={self.authorization_version})"
        )
