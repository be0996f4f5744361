"""
Checksum canonicalization for payment gateway payloads.

The gateway and this service build payloads independently, so both sides
sign a canonical form: ``checksum``/``checksumMethod`` stripped, mapping keys
sorted recursively, compact JSON with non-ASCII characters left as-is.
"""
import hashlib
import hmac
import json
import math
from collections.abc import Mapping, Sequence
from typing import Any

from arena_platform.core.exceptions import ChecksumError

SIGNATURE_FIELDS = ("checksum", "checksumMethod")


def _canonical_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ChecksumError("Non-finite numbers cannot be signed")
        # JavaScript prints 100.0 as 100
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, Mapping):
        canonical = {}
        for key in sorted(value.keys(), key=_require_str_key):
            canonical[key] = _canonical_value(value[key])
        return canonical
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_canonical_value(item) for item in value]
    raise ChecksumError(f"Cannot canonicalize value of type {type(value).__name__}")


def _require_str_key(key: Any) -> str:
    if not isinstance(key, str):
        raise ChecksumError(f"Payload keys must be strings, got {type(key).__name__}")
    return key


def canonicalize(payload: Mapping[str, Any]) -> str:
    """
    Produce the byte-stable text form of a gateway payload.

    Args:
        payload: Gateway payload, possibly nested

    Returns:
        str: Compact JSON with recursively sorted keys

    Raises:
        ChecksumError: If the payload holds values JSON cannot represent exactly
    """
    if not isinstance(payload, Mapping):
        raise ChecksumError("Payload must be a mapping")

    signed = {key: value for key, value in payload.items() if key not in SIGNATURE_FIELDS}
    return json.dumps(
        _canonical_value(signed),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def compute_checksum(payload: Mapping[str, Any], key: str) -> str:
    """HMAC-SHA256 hex digest of the canonical payload."""
    canonical = canonicalize(payload)
    return hmac.new(key.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_checksum(payload: Mapping[str, Any], key: str) -> bool:
    """Check the payload's embedded ``checksum`` in constant time."""
    provided = payload.get("checksum")
    if not isinstance(provided, str) or not provided:
        return False
    expected = compute_checksum(payload, key)
    return hmac.compare_digest(provided.lower(), expected)


def sign_raw_body(raw_body: bytes, key: str) -> str:
    """HMAC-SHA256 hex digest over an exact request body."""
    return hmac.new(key.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_raw_body_signature(raw_body: bytes, signature: str, key: str) -> bool:
    if not signature:
        return False
    expected = sign_raw_body(raw_body, key)
    return hmac.compare_digest(signature.strip().lower(), expected)
