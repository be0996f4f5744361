"""
Domain exceptions for the arena platform.

Every exception carries what the API boundary needs to answer without
leaking internals:
- HTTP status code
- Stable machine-readable code (optional)
- Public message safe to show to clients
- Extra fields merged into the response body
"""
from typing import Any, Dict, Optional


class ArenaError(Exception):
    """Base exception for all platform errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: int = 500,
        public_message: Optional[str] = None,
        **extra: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.public_message = public_message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        body: Dict[str, Any] = {"message": self.public_message or self.message}
        if self.code:
            body["code"] = self.code
        body.update(self.extra)
        return body


class ValidationFailedError(ArenaError):
    def __init__(self, message: str, **extra: Any):
        super().__init__(message, code="VALIDATION_ERROR", status_code=400, **extra)


class NotFoundError(ArenaError):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message, code=code, status_code=404)


class DisputeNotFoundError(NotFoundError):
    def __init__(self, dispute_id: Any = None):
        super().__init__("Dispute not found.")
        self.dispute_id = dispute_id


class MatchNotFoundError(NotFoundError):
    def __init__(self, match_id: Any = None):
        super().__init__("Match not found.")
        self.match_id = match_id


class ForbiddenError(ArenaError):
    def __init__(self, message: str = "You don't have permission to perform this action"):
        super().__init__(message, code="FORBIDDEN", status_code=403)


class InvalidDisputeTransitionError(ArenaError):
    """Raised when a dispute is asked to move along an edge that does not exist."""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Cannot move dispute from {from_status} to {to_status}.",
            code="INVALID_DISPUTE_TRANSITION",
            status_code=409,
            from_status=from_status,
            to_status=to_status,
        )


class InvalidCurrencyError(ArenaError):
    def __init__(self, message: str = "currency is required"):
        super().__init__(message, code="INVALID_CURRENCY", status_code=400)


class CurrencyMismatchError(ArenaError):
    def __init__(self, wallet_currency: str, request_currency: str):
        super().__init__(
            "Request currency does not match wallet currency.",
            code="CURRENCY_MISMATCH",
            status_code=409,
            wallet_currency=wallet_currency,
            request_currency=request_currency,
        )


class InsufficientFundsError(ArenaError):
    def __init__(self, available: Any, requested: Any):
        super().__init__(
            "Insufficient wallet balance.",
            code="INSUFFICIENT_FUNDS",
            status_code=400,
        )
        self.available = available
        self.requested = requested


class ChecksumError(ArenaError):
    """Raised when a payload cannot be canonicalized for signing."""

    def __init__(self, message: str):
        super().__init__(message, code="CHECKSUM_ERROR", status_code=400)


class EncryptionError(ArenaError):
    def __init__(self, message: str):
        super().__init__(message, code="ENCRYPTION_ERROR", status_code=500)


class GatewayError(ArenaError):
    """Raised when the payment gateway rejects or fails a request."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(
            message,
            code="GATEWAY_ERROR",
            status_code=502,
            public_message="Payment provider is unavailable. Please try again later.",
        )
        self.retryable = retryable


class WebhookError(ArenaError):
    def __init__(self, message: str, code: str = "WEBHOOK_ERROR", status_code: int = 400):
        super().__init__(message, code=code, status_code=status_code)


class WebhookSignatureError(WebhookError):
    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message, code="INVALID_SIGNATURE", status_code=401)
