"""
Consumed delegation token ids.

A row exists for every delegation token that has been exchanged for access
material, until its retention window passes and cleanup removes it.
"""

from sqlalchemy import Column, DateTime, String

from .db_base import utc_now
from .db_config import Base


class ConsumedDelegationToken(Base):
    """Single-use record keyed by the token's jti claim."""

    __tablename__ = "consumed_delegation_tokens"

    jti = Column(String(255), primary_key=True)
    tenant_id = Column(String(100), nullable=False)
    connection_id = Column(String(36), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
