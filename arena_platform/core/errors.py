"""
Error classifier for the API boundary.

Turns any exception into a stable (status, message, code) triple. Data-access
failures are mapped through a fixed table with deliberately generic
messages; everything else falls back to what the error or the caller
supplies. Raw database text never reaches a client.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

GENERIC_SERVER_MESSAGE = "Something went wrong. Please try again later."
DATABASE_ERROR_MESSAGE = "Server configuration error. Please try again later."

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

# Codes whose public status and message are fixed regardless of the raiser
SAFE_CODE_MAP: Dict[str, tuple[int, str]] = {
    "FORBIDDEN": (403, "You don't have permission to perform this action"),
}


@dataclass(frozen=True)
class ErrorResponse:
    status: int
    message: str
    code: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        """Response body; ``code`` is only present when known."""
        payload: Dict[str, Any] = {"message": self.message}
        if self.code:
            payload["code"] = self.code
        return payload


VALIDATION_FAILED = ErrorResponse(400, "Invalid data provided.", "VALIDATION_ERROR")
ALREADY_EXISTS = ErrorResponse(409, "Already exists.", "ALREADY_EXISTS")
INVALID_REFERENCE = ErrorResponse(400, "Invalid reference.", "INVALID_REFERENCE")
DATABASE_FAILURE = ErrorResponse(500, DATABASE_ERROR_MESSAGE, "DATABASE_ERROR")


def _driver_sqlstate(error: IntegrityError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        value = getattr(orig, attr, None)
        if value:
            return str(value)
    return None


def is_unique_violation(error: BaseException) -> bool:
    """True when ``error`` is a uniqueness violation from any supported driver."""
    if not isinstance(error, IntegrityError):
        return False
    if _driver_sqlstate(error) == UNIQUE_VIOLATION:
        return True
    text = str(error.orig).lower()
    return "unique" in text or "duplicate key" in text


def is_foreign_key_violation(error: BaseException) -> bool:
    """True when ``error`` is a dangling-reference violation."""
    if not isinstance(error, IntegrityError):
        return False
    if _driver_sqlstate(error) == FOREIGN_KEY_VIOLATION:
        return True
    return "foreign key" in str(error.orig).lower()


def _classify_data_access(error: BaseException) -> Optional[ErrorResponse]:
    if isinstance(error, (PydanticValidationError, RequestValidationError)):
        return VALIDATION_FAILED
    if isinstance(error, IntegrityError):
        if is_unique_violation(error):
            return ALREADY_EXISTS
        if is_foreign_key_violation(error):
            return INVALID_REFERENCE
        # NOT NULL and CHECK violations
        return VALIDATION_FAILED
    if isinstance(error, SQLAlchemyError):
        return DATABASE_FAILURE
    return None


def classify_error(
    error: BaseException,
    fallback_status: Optional[int] = None,
    fallback_code: Optional[str] = None,
    fallback_message: Optional[str] = None,
) -> ErrorResponse:
    """
    Map an exception onto the response the API should send.

    Args:
        error: The exception raised while serving a request
        fallback_status: Status used when the error carries none
        fallback_code: Code used when the error carries none
        fallback_message: Message that overrides the error's own

    Returns:
        ErrorResponse: Status, public message and optional code
    """
    mapped = _classify_data_access(error)
    if mapped is not None:
        return mapped

    code = getattr(error, "code", None) or fallback_code
    if isinstance(code, str) and code in SAFE_CODE_MAP:
        status, message = SAFE_CODE_MAP[code]
        return ErrorResponse(status, message, code)

    status = (
        getattr(error, "status_code", None)
        or getattr(error, "status", None)
        or fallback_status
        or 500
    )
    if not isinstance(status, int):
        status = 500

    if fallback_message:
        message = fallback_message
    elif getattr(error, "public_message", None):
        message = error.public_message  # type: ignore[attr-defined]
    elif status >= 500:
        message = GENERIC_SERVER_MESSAGE
    else:
        message = getattr(error, "message", None) or str(error) or "Request failed."

    return ErrorResponse(status, message, code if isinstance(code, str) else None)
