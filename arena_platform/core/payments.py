"""
Wallet deposits and withdrawals backed by gateway payment records.

Flow for a new request:
1. Validate amount and wallet currency
2. Resolve the idempotency key (request metadata, or a minted one)
3. Return the existing record if the key was already used
4. Create Transaction + PaymentRecord through the idempotency guard
5. Hand the payment to the gateway (when a client is configured)

Balances only move through :func:`apply_to_wallet`, which also stamps the
transaction's balance_before/balance_after.
"""
import re
import secrets
import time
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arena_platform.core.exceptions import (
    CurrencyMismatchError,
    InsufficientFundsError,
    NotFoundError,
    ValidationFailedError,
)
from arena_platform.core.idempotency import (
    IDEMPOTENCY_KEY_FIELD,
    IdempotencyGuard,
    extract_idempotency_key,
    generate_idempotency_key,
)
from arena_platform.database.models import (
    CREDIT_TRANSACTION_TYPES,
    DEBIT_TRANSACTION_TYPES,
    PaymentRecord,
    Transaction,
    User,
)
from arena_platform.monitoring.metrics import metrics

if TYPE_CHECKING:
    from arena_platform.core.encryption import EncryptionService
    from arena_platform.integrations.gateway_client import GatewayClient

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")
PHONE_PATTERN = re.compile(r"^255\d{9}$")


def generate_reference(prefix: str) -> str:
    """Order reference: prefix, epoch milliseconds, 8 random hex chars."""
    return f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(4).upper()}"


def normalize_amount(amount: Any) -> Decimal:
    """
    Coerce an amount to a positive two-decimal Decimal.

    Raises:
        ValidationFailedError: If the amount is not a positive number
    """
    try:
        value = Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as e:
        raise ValidationFailedError("Amount must be a number") from e
    if not value.is_finite() or value <= 0:
        raise ValidationFailedError("Amount must be positive")
    return value


def normalize_phone_number(phone_number: Optional[str]) -> str:
    """
    Normalize a Tanzanian mobile number to ``255XXXXXXXXX``.

    Accepts a leading 0, a bare 9-digit subscriber number, or the
    international form with or without ``+`` and spacing.

    Raises:
        ValidationFailedError: If the number cannot be normalized
    """
    digits = re.sub(r"\D", "", phone_number or "")
    if digits.startswith("0"):
        digits = "255" + digits[1:]
    elif len(digits) == 9:
        digits = "255" + digits
    if not PHONE_PATTERN.match(digits):
        raise ValidationFailedError("Invalid phone number. Expected format: 255XXXXXXXXX")
    return digits


def ensure_wallet_currency(user: User, currency: Optional[str]) -> str:
    """
    Check a request currency against the user's wallet.

    Returns:
        str: The wallet currency (used when the request names none)

    Raises:
        CurrencyMismatchError: If the request currency differs from the wallet's
    """
    wallet_currency = user.wallet_currency.upper()
    if currency and currency.upper() != wallet_currency:
        raise CurrencyMismatchError(wallet_currency, currency.upper())
    return wallet_currency


def apply_to_wallet(user: User, transaction: Transaction) -> None:
    """
    Move the user's balance by ``transaction`` and stamp the ledger entry.

    Credit types add, debit types subtract.

    Raises:
        InsufficientFundsError: If a debit would take the balance below zero
    """
    before = Decimal(user.wallet_balance or 0)
    amount = Decimal(transaction.amount)
    if transaction.type in CREDIT_TRANSACTION_TYPES:
        after = before + amount
    elif transaction.type in DEBIT_TRANSACTION_TYPES:
        if amount > before:
            raise InsufficientFundsError(available=before, requested=amount)
        after = before - amount
    else:
        raise ValidationFailedError(f"Unknown transaction type: {transaction.type}")

    transaction.balance_before = before
    transaction.balance_after = after
    user.wallet_balance = after


class PaymentService:
    """
    Creates deposits and withdrawals and settles them from gateway events.

    The gateway client is optional: without one, records stay ``initiated``
    until a webhook or an operator moves them. With an encryption service,
    customer phone numbers are sealed before they reach the database.
    """

    def __init__(
        self,
        gateway_client: Optional["GatewayClient"] = None,
        guard: Optional[IdempotencyGuard] = None,
        encryption: Optional["EncryptionService"] = None,
    ):
        self.gateway_client = gateway_client
        self.guard = guard or IdempotencyGuard()
        self.encryption = encryption

    def _protect_phone(self, phone_number: Optional[str]) -> Optional[str]:
        if not phone_number or self.encryption is None:
            return phone_number
        return self.encryption.seal(phone_number)

    def reveal_customer_phone(self, record: PaymentRecord) -> Optional[str]:
        """Customer phone number of ``record`` in clear text."""
        if not record.customer_phone or self.encryption is None:
            return record.customer_phone
        return self.encryption.unseal(record.customer_phone)

    @staticmethod
    async def _get_user(db: AsyncSession, user_id: int, for_update: bool = False) -> User:
        stmt = select(User).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        user = (await db.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found.")
        return user

    @staticmethod
    def _resolve_key(
        user_id: int,
        amount: Decimal,
        idempotency_key: Optional[str],
        metadata: Optional[Dict[str, Any]],
        recipient: str,
    ) -> Tuple[str, Dict[str, Any]]:
        meta = dict(metadata or {})
        key = (
            (idempotency_key or "").strip()
            or extract_idempotency_key(meta)
            or generate_idempotency_key(user_id, amount, recipient)
        )
        meta[IDEMPOTENCY_KEY_FIELD] = key
        return key, meta

    async def create_deposit(
        self,
        db: AsyncSession,
        user_id: int,
        amount: Any,
        currency: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        phone_number: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[PaymentRecord, bool]:
        """
        Start a deposit into the user's wallet.

        The wallet is only credited when the gateway confirms the payment.

        Args:
            db: Database session
            user_id: Depositing user
            amount: Amount to deposit
            currency: Request currency; must match the wallet
            idempotency_key: Client key; falls back to ``metadata``
            phone_number: Mobile money number to prompt
            metadata: Opaque request metadata stored on the record

        Returns:
            Tuple[PaymentRecord, bool]: Record, and whether this call created it
        """
        amount = normalize_amount(amount)
        if phone_number:
            phone_number = normalize_phone_number(phone_number)
        key, meta = self._resolve_key(user_id, amount, idempotency_key, metadata, phone_number or "")

        existing = await self.guard.find_existing(db, user_id, key)
        if existing is not None:
            metrics.record_idempotent_replay("deposit")
            return existing, False

        user = await self._get_user(db, user_id)
        currency = ensure_wallet_currency(user, currency)

        transaction = Transaction(
            user_id=user_id,
            type="deposit",
            amount=amount,
            currency=currency,
            balance_before=user.wallet_balance,
            balance_after=user.wallet_balance,
            status="pending",
            transaction_reference=generate_reference("DEPO"),
            description="Mobile money deposit",
        )
        record = PaymentRecord(
            user_id=user_id,
            amount=amount,
            currency=currency,
            status="initiated",
            payment_method="mobile_money_deposit",
            customer_phone=self._protect_phone(phone_number),
            metadata_=meta,
            transaction=transaction,
        )

        record, created = await self.guard.persist(db, record)
        if not created:
            metrics.record_idempotent_replay("deposit")
            return record, False

        metrics.record_payment_record_created(record.payment_method, currency)
        logger.info(
            "deposit_created",
            user_id=user_id,
            payment_record_id=record.id,
            transaction_reference=transaction.transaction_reference,
            amount=str(amount),
            currency=currency,
        )

        if self.gateway_client is not None and phone_number:
            response = await self.gateway_client.initiate_ussd_push(
                amount=amount,
                currency=currency,
                order_reference=transaction.transaction_reference,
                phone_number=phone_number,
            )
            record.gateway_response = response
            record.gateway_payment_id = response.get("id") or None
            record.status = "pending"
            await db.flush()

        return record, True

    async def create_withdrawal(
        self,
        db: AsyncSession,
        user_id: int,
        amount: Any,
        phone_number: str,
        currency: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[PaymentRecord, bool]:
        """
        Withdraw from the user's wallet to a mobile money number.

        Funds are reserved immediately under a row lock on the user; a
        failed or reversed payout refunds them.

        Returns:
            Tuple[PaymentRecord, bool]: Record, and whether this call created it

        Raises:
            InsufficientFundsError: If the wallet cannot cover the amount
            ValidationFailedError: If the amount or phone number is malformed
        """
        amount = normalize_amount(amount)
        phone_number = normalize_phone_number(phone_number)
        key, meta = self._resolve_key(user_id, amount, idempotency_key, metadata, phone_number)

        existing = await self.guard.find_existing(db, user_id, key)
        if existing is not None:
            metrics.record_idempotent_replay("withdrawal")
            return existing, False

        user = await self._get_user(db, user_id, for_update=True)
        currency = ensure_wallet_currency(user, currency)

        transaction = Transaction(
            user_id=user_id,
            type="withdrawal",
            amount=amount,
            currency=currency,
            status="pending",
            transaction_reference=generate_reference("WTH"),
            description="Mobile money withdrawal",
        )
        apply_to_wallet(user, transaction)

        record = PaymentRecord(
            user_id=user_id,
            amount=amount,
            currency=currency,
            status="initiated",
            payment_method="mobile_money_payout",
            customer_phone=self._protect_phone(phone_number),
            metadata_=meta,
            transaction=transaction,
        )

        record, created = await self.guard.persist(db, record)
        if not created:
            metrics.record_idempotent_replay("withdrawal")
            return record, False

        metrics.record_payment_record_created(record.payment_method, currency)
        logger.info(
            "withdrawal_created",
            user_id=user_id,
            payment_record_id=record.id,
            transaction_reference=transaction.transaction_reference,
            amount=str(amount),
            balance_after=str(transaction.balance_after),
        )

        if self.gateway_client is not None:
            response = await self.gateway_client.initiate_payout(
                amount=amount,
                currency=currency,
                order_reference=transaction.transaction_reference,
                phone_number=phone_number,
            )
            record.gateway_response = response
            record.gateway_payment_id = response.get("id") or None
            record.status = "processing"
            await db.flush()

        return record, True

    @staticmethod
    async def get_transaction(
        db: AsyncSession, transaction_id: int, user_id: int
    ) -> Transaction:
        """Fetch one of the user's transactions."""
        stmt = select(Transaction).where(
            Transaction.id == transaction_id, Transaction.user_id == user_id
        )
        transaction = (await db.execute(stmt)).scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Transaction not found.")
        return transaction

    @staticmethod
    async def find_by_reference(
        db: AsyncSession, reference: str
    ) -> Optional[PaymentRecord]:
        """Find a payment record by order reference or gateway payment id."""
        stmt = (
            select(PaymentRecord)
            .join(Transaction, PaymentRecord.transaction_id == Transaction.id)
            .where(
                (Transaction.transaction_reference == reference)
                | (PaymentRecord.gateway_payment_id == reference)
            )
        )
        return (await db.execute(stmt)).scalars().first()

    async def complete_deposit(
        self, db: AsyncSession, record: PaymentRecord, webhook_data: Dict[str, Any]
    ) -> bool:
        """
        Credit a confirmed deposit.

        Returns:
            bool: False when the deposit was already settled
        """
        transaction = record.transaction
        if transaction.type != "deposit" or transaction.status != "pending":
            return False

        user = await self._get_user(db, record.user_id, for_update=True)
        apply_to_wallet(user, transaction)
        now = datetime.now(timezone.utc)
        transaction.status = "completed"
        transaction.completed_at = now
        record.status = "successful"
        record.completed_at = now
        record.webhook_data = webhook_data
        await db.flush()

        logger.info(
            "deposit_completed",
            user_id=record.user_id,
            transaction_reference=transaction.transaction_reference,
            balance_after=str(transaction.balance_after),
        )
        return True

    async def complete_withdrawal(
        self, db: AsyncSession, record: PaymentRecord, webhook_data: Dict[str, Any]
    ) -> bool:
        """Mark a paid-out withdrawal completed; the funds already left the wallet."""
        transaction = record.transaction
        if transaction.type != "withdrawal" or transaction.status != "pending":
            return False

        now = datetime.now(timezone.utc)
        transaction.status = "completed"
        transaction.completed_at = now
        record.status = "successful"
        record.completed_at = now
        record.webhook_data = webhook_data
        await db.flush()

        logger.info(
            "withdrawal_completed",
            user_id=record.user_id,
            transaction_reference=transaction.transaction_reference,
        )
        return True

    async def fail_payment(
        self, db: AsyncSession, record: PaymentRecord, webhook_data: Dict[str, Any]
    ) -> bool:
        """
        Mark a pending payment failed; a withdrawal's reserved funds come back.

        Returns:
            bool: False when the payment was already settled
        """
        transaction = record.transaction
        if transaction.status != "pending":
            return False

        now = datetime.now(timezone.utc)
        if transaction.type == "withdrawal":
            await self._refund_withdrawal(db, record)
        transaction.status = "failed"
        transaction.failed_at = now
        record.status = "failed"
        record.failed_at = now
        record.webhook_data = webhook_data
        await db.flush()

        logger.info(
            "payment_failed",
            user_id=record.user_id,
            transaction_reference=transaction.transaction_reference,
            type=transaction.type,
        )
        return True

    async def reverse_payout(
        self, db: AsyncSession, record: PaymentRecord, webhook_data: Dict[str, Any]
    ) -> bool:
        """
        Refund a withdrawal the gateway reversed, whether or not it had settled.

        Returns:
            bool: False when the withdrawal was already failed or refunded
        """
        transaction = record.transaction
        if transaction.type != "withdrawal" or transaction.status == "failed":
            return False

        await self._refund_withdrawal(db, record)
        now = datetime.now(timezone.utc)
        transaction.status = "failed"
        transaction.failed_at = now
        record.status = "failed"
        record.failed_at = now
        record.webhook_data = webhook_data
        await db.flush()
        return True

    async def _refund_withdrawal(self, db: AsyncSession, record: PaymentRecord) -> Transaction:
        user = await self._get_user(db, record.user_id, for_update=True)
        original = record.transaction
        refund = Transaction(
            user_id=record.user_id,
            type="refund",
            amount=original.amount,
            currency=original.currency,
            status="completed",
            transaction_reference=generate_reference("TX"),
            description=f"Refund of {original.transaction_reference}",
            completed_at=datetime.now(timezone.utc),
        )
        apply_to_wallet(user, refund)
        db.add(refund)
        logger.info(
            "withdrawal_refunded",
            user_id=record.user_id,
            transaction_reference=original.transaction_reference,
            refund_reference=refund.transaction_reference,
        )
        return refund
