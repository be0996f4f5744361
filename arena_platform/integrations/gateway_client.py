"""
Mobile money gateway client with retry logic and error classification.

Implements:
- Bearer token generation and caching
- USSD-push deposit initiation
- Mobile money payout initiation
- Checksum signing of outgoing payloads
- Exponential backoff for transient errors
"""
import time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from arena_platform.config import Settings, get_settings
from arena_platform.core.checksum import compute_checksum
from arena_platform.core.exceptions import GatewayError, ValidationFailedError
from arena_platform.core.payments import normalize_phone_number

logger = structlog.get_logger(__name__)

TOKEN_PATH = "/third-parties/generate-token"
USSD_PUSH_PATH = "/third-parties/payments/initiate-ussd-push-request"
MOBILE_PAYOUT_PATH = "/third-parties/payouts/create-mobile-money-payout"


class GatewayErrorType(Enum):
    """Classification of gateway errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, GatewayError) and error.retryable


def format_phone_number(phone_number: str) -> str:
    """
    Normalize a Tanzanian mobile number to ``255XXXXXXXXX``.

    Raises:
        GatewayError: If the number cannot be normalized
    """
    try:
        return normalize_phone_number(phone_number)
    except ValidationFailedError as e:
        raise GatewayError(e.message) from e


class GatewayClient:
    """
    Async client for the mobile money gateway.

    Features:
    - Automatic retry with exponential backoff on transport errors and 5xx
    - Token cached until shortly before expiry
    - Every outgoing payload carries a checksum of its canonical form
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.gateway_base_url,
            timeout=self.settings.gateway_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0

        logger.info("gateway_client_initialized", base_url=self.settings.gateway_base_url)

    @staticmethod
    def _classify_status(status_code: int) -> GatewayErrorType:
        if status_code == 429 or status_code >= 500:
            return GatewayErrorType.TRANSIENT
        return GatewayErrorType.PERMANENT

    def _sign(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        signed = dict(payload)
        signed["checksum"] = compute_checksum(payload, self.settings.gateway_checksum_key)
        return signed

    async def _request(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("gateway_transport_error", path=path, error=str(e))
            raise GatewayError(f"Gateway request failed: {e}", retryable=True) from e

        if response.status_code >= 400:
            error_type = self._classify_status(response.status_code)
            logger.error(
                "gateway_api_error",
                path=path,
                status_code=response.status_code,
                error_type=error_type.value,
            )
            raise GatewayError(
                f"Gateway returned {response.status_code} for {path}",
                retryable=error_type == GatewayErrorType.TRANSIENT,
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"Gateway returned a non-JSON body for {path}") from e

    async def generate_token(self) -> str:
        """
        Get a bearer token, reusing the cached one while it is valid.

        Returns:
            str: Authorization token

        Raises:
            GatewayError: If credentials are missing or the gateway refuses
        """
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        if not self.settings.gateway_client_id or not self.settings.gateway_api_key:
            raise GatewayError("Gateway credentials not configured")

        body = await self._request(
            TOKEN_PATH,
            {},
            headers={
                "client-id": self.settings.gateway_client_id,
                "api-key": self.settings.gateway_api_key,
            },
        )
        token = body.get("token")
        if not body.get("success") or not token:
            raise GatewayError("Token generation failed: invalid response")

        self._token = token
        self._token_expires_at = time.monotonic() + self.settings.gateway_token_ttl_seconds
        logger.info("gateway_token_generated")
        return token

    async def _authorized_post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        token = await self.generate_token()
        return await self._request(path, self._sign(payload), headers={"Authorization": token})

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def initiate_ussd_push(
        self,
        amount: Decimal,
        currency: str,
        order_reference: str,
        phone_number: str,
    ) -> Dict[str, Any]:
        """
        Ask the gateway to push a payment prompt to the customer's phone.

        Args:
            amount: Amount to collect
            currency: Currency code
            order_reference: Our transaction reference
            phone_number: Customer phone number

        Returns:
            Dict[str, Any]: Gateway response, stored verbatim for audit
        """
        logger.info(
            "initiating_ussd_push",
            order_reference=order_reference,
            amount=str(amount),
            currency=currency,
        )
        payload = {
            "amount": str(amount),
            "currency": currency,
            "orderReference": order_reference,
            "phoneNumber": format_phone_number(phone_number),
        }
        return await self._authorized_post(USSD_PUSH_PATH, payload)

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def initiate_payout(
        self,
        amount: Decimal,
        currency: str,
        order_reference: str,
        phone_number: str,
    ) -> Dict[str, Any]:
        """Send money to a customer's mobile wallet."""
        logger.info(
            "initiating_payout",
            order_reference=order_reference,
            amount=str(amount),
            currency=currency,
        )
        payload = {
            "amount": str(amount),
            "currency": currency,
            "orderReference": order_reference,
            "phoneNumber": format_phone_number(phone_number),
        }
        return await self._authorized_post(MOBILE_PAYOUT_PATH, payload)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
