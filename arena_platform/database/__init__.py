"""Database package: models and async session management."""
from .connection import close_db, get_db, get_engine, get_session_factory, init_db
from .models import (
    Base,
    Dispute,
    Match,
    PaymentRecord,
    Tournament,
    TournamentParticipant,
    Transaction,
    User,
    WebhookLog,
)

__all__ = [
    "Base",
    "Dispute",
    "Match",
    "PaymentRecord",
    "Tournament",
    "TournamentParticipant",
    "Transaction",
    "User",
    "WebhookLog",
    "close_db",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
]
