"""SQLAlchemy database models for wallets, payments and match disputes."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

CREDIT_TRANSACTION_TYPES = ("deposit", "prize_won", "refund")
DEBIT_TRANSACTION_TYPES = ("withdrawal", "tournament_entry")
TRANSACTION_TYPES = CREDIT_TRANSACTION_TYPES + DEBIT_TRANSACTION_TYPES
TRANSACTION_STATUSES = ("pending", "completed", "failed")

PAYMENT_RECORD_STATUSES = ("initiated", "pending", "processing", "successful", "failed")
PAYMENT_METHODS = ("mobile_money_deposit", "mobile_money_payout")

DISPUTE_STATUSES = ("open", "under_review", "resolved")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class User(TimestampMixin, Base):
    """Platform account with its wallet."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="player")
    wallet_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    wallet_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TZS")

    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="non_negative_wallet_balance"),
        CheckConstraint(_in("role", ("player", "admin")), name="valid_user_role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"


class Tournament(TimestampMixin, Base):
    """Tournament that owns participants and matches."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    format: Mapped[str] = mapped_column(String(50), nullable=False, default="single_elimination")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="open")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TZS")
    entry_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )

    def __repr__(self) -> str:
        """String representation of Tournament."""
        return f"<Tournament(id={self.id}, name={self.name}, status={self.status})>"


class TournamentParticipant(TimestampMixin, Base):
    """A user's seat in a tournament."""

    __tablename__ = "tournament_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    gamer_tag: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    user: Mapped["User"] = relationship()
    tournament: Mapped["Tournament"] = relationship()

    __table_args__ = (
        Index("uq_participant_tournament_user", "tournament_id", "user_id", unique=True),
    )

    def __repr__(self) -> str:
        """String representation of TournamentParticipant."""
        return (
            f"<TournamentParticipant(id={self.id}, tournament_id={self.tournament_id}, "
            f"user_id={self.user_id})>"
        )


class Match(TimestampMixin, Base):
    """
    Bracket match between two participants.

    The resolution fields are only populated when the match is settled
    outside normal play (forfeit, no-contest or admin override). The forfeit
    references are weak: lookup only, nulled when the target row goes away.
    """

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    participant1_id: Mapped[int] = mapped_column(
        ForeignKey("tournament_participants.id"), nullable=False
    )
    participant2_id: Mapped[int] = mapped_column(
        ForeignKey("tournament_participants.id"), nullable=False
    )
    participant1_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    participant2_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="scheduled")
    winner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournament_participants.id"), nullable=True
    )
    confirmed_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    resolved_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    forfeit_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    forfeit_participant_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tournament_participants.id", ondelete="SET NULL"), nullable=True
    )

    tournament: Mapped["Tournament"] = relationship()
    participant1: Mapped["TournamentParticipant"] = relationship(foreign_keys=[participant1_id])
    participant2: Mapped["TournamentParticipant"] = relationship(foreign_keys=[participant2_id])
    disputes: Mapped[List["Dispute"]] = relationship(back_populates="match")

    __table_args__ = (
        CheckConstraint(
            "forfeit_user_id IS NULL OR forfeit_participant_id IS NOT NULL",
            name="forfeit_user_requires_participant",
        ),
    )

    def participant_ids(self) -> tuple[int, int]:
        return (self.participant1_id, self.participant2_id)

    def __repr__(self) -> str:
        """String representation of Match."""
        return f"<Match(id={self.id}, round={self.round_number}, status={self.status})>"


class Dispute(TimestampMixin, Base):
    """
    Score dispute raised by a match participant.

    Lifecycle: open -> under_review -> resolved. ``resolved_by_admin_id`` and
    ``closed_at`` are written together and only for resolved disputes.
    """

    __tablename__ = "disputes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(
        ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    raised_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    resolution_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by_admin_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    match: Mapped["Match"] = relationship(back_populates="disputes")
    raised_by: Mapped["User"] = relationship(foreign_keys=[raised_by_user_id])
    resolved_by: Mapped[Optional["User"]] = relationship(foreign_keys=[resolved_by_admin_id])

    __table_args__ = (
        CheckConstraint(_in("status", DISPUTE_STATUSES), name="valid_dispute_status"),
        CheckConstraint(
            "(resolved_by_admin_id IS NULL) = (closed_at IS NULL)",
            name="resolver_and_closed_at_together",
        ),
        CheckConstraint(
            "(status = 'resolved') = (closed_at IS NOT NULL)",
            name="closed_at_only_when_resolved",
        ),
    )

    def __repr__(self) -> str:
        """String representation of Dispute."""
        return f"<Dispute(id={self.id}, match_id={self.match_id}, status={self.status})>"


class Transaction(TimestampMixin, Base):
    """
    Wallet ledger entry.

    ``balance_after`` is ``balance_before`` plus ``amount`` for credit types
    and minus ``amount`` for debit types.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TZS")
    balance_before: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    balance_after: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    transaction_reference: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    payment_record: Mapped[Optional["PaymentRecord"]] = relationship(
        back_populates="transaction", uselist=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_transaction_amount"),
        CheckConstraint(_in("type", TRANSACTION_TYPES), name="valid_transaction_type"),
        CheckConstraint(_in("status", TRANSACTION_STATUSES), name="valid_transaction_status"),
        CheckConstraint("length(currency) = 3", name="valid_transaction_currency"),
        Index("idx_transactions_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, user_id={self.user_id}, type={self.type}, "
            f"amount={self.amount}, status={self.status})>"
        )


class PaymentRecord(TimestampMixin, Base):
    """
    Gateway-side view of a wallet transaction.

    ``gateway_response``, ``webhook_data`` and ``metadata`` are opaque
    documents kept verbatim for audit. The request's idempotency key lives
    in ``metadata`` and is unique per user through an expression index.
    """

    __tablename__ = "payment_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TZS")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="initiated")
    payment_method: Mapped[str] = mapped_column(
        String(50), nullable=False, default="mobile_money_deposit"
    )
    customer_phone: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gateway_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)
    webhook_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)
    metadata_: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSONDocument, nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    transaction: Mapped["Transaction"] = relationship(
        back_populates="payment_record", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_payment_amount"),
        CheckConstraint(_in("status", PAYMENT_RECORD_STATUSES), name="valid_payment_status"),
        CheckConstraint(_in("payment_method", PAYMENT_METHODS), name="valid_payment_method"),
        Index("idx_payment_records_user_status", "user_id", "status"),
    )

    @property
    def idempotency_key(self) -> Optional[str]:
        return (self.metadata_ or {}).get("idempotency_key")

    @property
    def transaction_reference(self) -> Optional[str]:
        return self.transaction.transaction_reference if self.transaction else None

    def __repr__(self) -> str:
        """String representation of PaymentRecord."""
        return (
            f"<PaymentRecord(id={self.id}, transaction_id={self.transaction_id}, "
            f"status={self.status})>"
        )


Index(
    "uq_payment_records_user_idempotency_key",
    PaymentRecord.user_id,
    PaymentRecord.metadata_["idempotency_key"].as_string(),
    unique=True,
)


class WebhookLog(Base):
    """
    Received gateway webhooks.

    One row per (webhook_id, event_type): the gateway reuses a payment id
    across the events of that payment, so only a repeat of the same event
    for the same id is a replay, and it must not reach any handler.
    """

    __tablename__ = "webhook_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    webhook_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    order_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    raw_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signature_header: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="processing")
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(_in("status", ("processing", "completed")), name="valid_webhook_status"),
        Index("uq_webhook_delivery", "webhook_id", "event_type", unique=True),
    )

    def __repr__(self) -> str:
        """String representation of WebhookLog."""
        return (
            f"<WebhookLog(id={self.id}, webhook_id={self.webhook_id}, "
            f"event_type={self.event_type}, status={self.status})>"
        )
