"""
Idempotency guard for payment record creation.

A retried request with an unchanged idempotency key must not charge twice.
Correctness rests on the unique index over
(payment_records.user_id, metadata->>'idempotency_key'):
1. Cheap pre-check for an existing record (fast path for sequential retries)
2. Insert; a unique violation means a concurrent twin won the race
3. Re-read the winner and return it as an idempotent success

No application-level or distributed locks are taken.
"""
import hashlib
import time
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arena_platform.core.errors import is_unique_violation
from arena_platform.database.models import PaymentRecord

logger = structlog.get_logger(__name__)

IDEMPOTENCY_KEY_FIELD = "idempotency_key"


class PaymentMetadata(BaseModel):
    """Opaque request metadata; only the idempotency key is interpreted."""

    model_config = ConfigDict(extra="allow")

    idempotency_key: Optional[str] = None


def extract_idempotency_key(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Read the idempotency key from request metadata.

    Blank keys count as absent.
    """
    if not metadata:
        return None
    key = PaymentMetadata.model_validate(metadata).idempotency_key
    if key is None:
        return None
    key = str(key).strip()
    return key or None


def generate_idempotency_key(
    user_id: int,
    amount: Decimal | str,
    recipient: str = "",
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Mint a key for a client that did not send one.

    Format: ``IDEMP_`` followed by 32 hex chars of SHA-256.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    digest = hashlib.sha256(f"{user_id}:{amount}:{recipient}:{timestamp_ms}".encode()).hexdigest()
    return f"IDEMP_{digest[:32]}"


class IdempotencyGuard:
    """Resolves existing-vs-new for payment records keyed per user."""

    @staticmethod
    async def find_existing(
        db: AsyncSession, user_id: int, idempotency_key: str
    ) -> Optional[PaymentRecord]:
        """
        Look up the record previously created for this user and key.

        Args:
            db: Database session
            user_id: Owner of the record
            idempotency_key: Key from the request metadata

        Returns:
            Optional[PaymentRecord]: Existing record if any
        """
        stmt = select(PaymentRecord).where(
            PaymentRecord.user_id == user_id,
            PaymentRecord.metadata_[IDEMPOTENCY_KEY_FIELD].as_string() == idempotency_key,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def persist(
        self, db: AsyncSession, record: PaymentRecord
    ) -> Tuple[PaymentRecord, bool]:
        """
        Insert ``record`` unless a record with its key already exists.

        The record's Transaction rides along through the relationship, so a
        conflict discards both. A conflict rolls back the session's current
        transaction: any other uncommitted work in it is discarded too.

        Args:
            db: Database session
            record: New payment record carrying the key in its metadata

        Returns:
            Tuple[PaymentRecord, bool]: The persisted or pre-existing record,
            and whether it was created by this call

        Raises:
            IntegrityError: If the insert fails for any reason other than a
                duplicate idempotency key
        """
        user_id = record.user_id
        key = record.idempotency_key
        if key:
            existing = await self.find_existing(db, user_id, key)
            if existing is not None:
                logger.info(
                    "idempotency_hit",
                    user_id=user_id,
                    idempotency_key=key,
                    payment_record_id=existing.id,
                    source="precheck",
                )
                return existing, False

        try:
            db.add(record)
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            if not key or not is_unique_violation(e):
                raise
            existing = await self.find_existing(db, user_id, key)
            if existing is None:
                raise
            logger.info(
                "idempotency_hit",
                user_id=user_id,
                idempotency_key=key,
                payment_record_id=existing.id,
                source="unique_violation",
            )
            return existing, False

        return record, True
