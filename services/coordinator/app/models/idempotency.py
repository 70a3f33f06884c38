"""
Idempotency claim model for the database-backed store.
"""
from sqlalchemy import BigInteger, Column, Index, String
from app.database import Base


class IdempotencyClaim(Base):
    """One live (or not yet swept) claim per dedup key."""

    __tablename__ = "idempotency_claims"

    dedup_key = Column(String(512), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    operation_name = Column(String(255), nullable=False)
    payload_fingerprint = Column(String(32), nullable=False)
    created_at_ms = Column(BigInteger, nullable=False)
    expires_at_ms = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index('idx_idempotency_claims_expires', 'expires_at_ms'),
    )

    def __repr__(self):
        return f"<IdempotencyClaim(key={self.dedup_key}, expires_at_ms={self.expires_at_ms})>"
