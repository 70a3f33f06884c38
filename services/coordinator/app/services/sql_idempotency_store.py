"""
Database-backed idempotency store.

The primary key on idempotency_claims.dedup_key is the linearization point:
a claim deletes an expired row for its key (if any) and inserts, and an
IntegrityError on insert means another caller holds a live claim.
"""
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.idempotency import IdempotencyRecord, StoreUnavailable
from app.database import SessionLocal
from app.models.idempotency import IdempotencyClaim
from app.obs.logging import get_logger
from app.services.idempotency_store import Clock, IdempotencyStore

logger = get_logger(__name__)

MAX_CLAIM_ATTEMPTS = 3


def _to_record(row: IdempotencyClaim) -> IdempotencyRecord:
    return IdempotencyRecord(
        owner_id=row.owner_id,
        operation_name=row.operation_name,
        payload_fingerprint=row.payload_fingerprint,
        created_at_ms=row.created_at_ms,
        expires_at_ms=row.expires_at_ms,
    )


def _to_row(key: str, record: IdempotencyRecord, expires_at_ms: int) -> IdempotencyClaim:
    return IdempotencyClaim(
        dedup_key=key,
        owner_id=record.owner_id,
        operation_name=record.operation_name,
        payload_fingerprint=record.payload_fingerprint,
        created_at_ms=record.created_at_ms,
        expires_at_ms=expires_at_ms,
    )


class SqlIdempotencyStore(IdempotencyStore):
    """Idempotency store on the service database."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self.session_factory = session_factory or SessionLocal

    def get(self, key: str) -> Optional[IdempotencyRecord]:
        try:
            with self.session_factory() as session:
                row = session.get(IdempotencyClaim, key)
                if row is None or row.expires_at_ms <= self.clock():
                    return None
                return _to_record(row)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Database read failed for idempotency key {key}", e) from e

    def set(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> None:
        try:
            with self.session_factory() as session:
                session.merge(_to_row(key, record, self.clock() + ttl_ms))
                session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Database write failed for idempotency key {key}", e) from e

    def delete(self, key: str) -> None:
        try:
            with self.session_factory() as session:
                session.query(IdempotencyClaim).filter(
                    IdempotencyClaim.dedup_key == key
                ).delete(synchronize_session=False)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Database delete failed for idempotency key {key}", e) from e

    def claim(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> Optional[IdempotencyRecord]:
        for _ in range(MAX_CLAIM_ATTEMPTS):
            try:
                with self.session_factory() as session:
                    now = self.clock()
                    session.query(IdempotencyClaim).filter(
                        IdempotencyClaim.dedup_key == key,
                        IdempotencyClaim.expires_at_ms <= now,
                    ).delete(synchronize_session=False)
                    session.add(_to_row(key, record, record.expires_at_ms))
                    try:
                        session.commit()
                        return None
                    except IntegrityError:
                        session.rollback()
                    row = session.get(IdempotencyClaim, key)
                    if row is not None and row.expires_at_ms > self.clock():
                        return _to_record(row)
            except SQLAlchemyError as e:
                raise StoreUnavailable(f"Database claim failed for idempotency key {key}", e) from e
        raise StoreUnavailable(f"Could not settle claim for idempotency key {key}")

    def sweep(self) -> int:
        try:
            with self.session_factory() as session:
                deleted = session.query(IdempotencyClaim).filter(
                    IdempotencyClaim.expires_at_ms <= self.clock()
                ).delete(synchronize_session=False)
                session.commit()
                return deleted
        except SQLAlchemyError as e:
            raise StoreUnavailable("Database sweep of idempotency claims failed", e) from e

    def ping(self) -> bool:
        try:
            with self.session_factory() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False
