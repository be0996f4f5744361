"""Core payment integrity and match dispute logic."""
from .checksum import canonicalize, compute_checksum, verify_checksum
from .currency import ResponseCurrencyMiddleware, attach_currency, require_currency
from .disputes import begin_review, get_dispute, list_disputes, raise_dispute, resolve_dispute
from .encryption import EncryptedValue, EncryptionService
from .errors import ErrorResponse, classify_error
from .idempotency import IdempotencyGuard, extract_idempotency_key, generate_idempotency_key
from .match_resolution import determine_forfeit_outcome, record_forfeit, record_no_contest
from .payments import PaymentService, apply_to_wallet

__all__ = [
    "EncryptedValue",
    "EncryptionService",
    "ErrorResponse",
    "IdempotencyGuard",
    "PaymentService",
    "ResponseCurrencyMiddleware",
    "apply_to_wallet",
    "attach_currency",
    "begin_review",
    "canonicalize",
    "classify_error",
    "compute_checksum",
    "determine_forfeit_outcome",
    "extract_idempotency_key",
    "generate_idempotency_key",
    "get_dispute",
    "list_disputes",
    "raise_dispute",
    "record_forfeit",
    "record_no_contest",
    "require_currency",
    "resolve_dispute",
    "verify_checksum",
]
