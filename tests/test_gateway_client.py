"""
Tests for the mobile money gateway client.
"""
import json
from decimal import Decimal
from typing import Any, Callable, List

import httpx
import pytest
from tenacity import wait_none

from arena_platform.config import Settings
from arena_platform.core.checksum import verify_checksum
from arena_platform.core.exceptions import GatewayError
from arena_platform.integrations.gateway_client import (
    MOBILE_PAYOUT_PATH,
    TOKEN_PATH,
    USSD_PUSH_PATH,
    GatewayClient,
    format_phone_number,
)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def gateway_settings(checksum_key: str) -> Settings:
    return Settings(
        gateway_base_url="https://gateway.test",
        gateway_client_id="client-1",
        gateway_api_key="api-key-1",
        gateway_checksum_key=checksum_key,
        database_url="sqlite+aiosqlite://",
        encryption_secret="test-encryption-secret",
    )


@pytest.fixture
def no_backoff(mocker: Any) -> None:
    mocker.patch.object(GatewayClient.initiate_ussd_push.retry, "wait", wait_none())
    mocker.patch.object(GatewayClient.initiate_payout.retry, "wait", wait_none())


def build_client(settings: Settings, handler: Handler) -> GatewayClient:
    http_client = httpx.AsyncClient(
        base_url=settings.gateway_base_url, transport=httpx.MockTransport(handler)
    )
    return GatewayClient(settings, http_client=http_client)


def token_response() -> httpx.Response:
    return httpx.Response(200, json={"success": True, "token": "Bearer abc"})


class TestPhoneNumbers:
    """Normalization to the international format."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("0712345678", "255712345678"),
            ("712345678", "255712345678"),
            ("+255 712 345 678", "255712345678"),
            ("255712345678", "255712345678"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert format_phone_number(raw) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["", "12345", "254712345678", "07123456789"])
    def test_rejects(self, raw: str) -> None:
        with pytest.raises(GatewayError):
            format_phone_number(raw)


class TestRequests:
    """Authorized, signed requests."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ussd_push_is_signed_and_authorized(
        self, gateway_settings: Settings, checksum_key: str
    ) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == TOKEN_PATH:
                return token_response()
            return httpx.Response(200, json={"id": "gw-1", "status": "PROCESSING"})

        client = build_client(gateway_settings, handler)
        result = await client.initiate_ussd_push(
            Decimal("1500.00"), "TZS", "DEPO1700000000000ABCDEF12", "0712345678"
        )
        await client.close()

        assert result == {"id": "gw-1", "status": "PROCESSING"}
        token_request, push_request = seen
        assert token_request.headers["client-id"] == "client-1"
        assert token_request.headers["api-key"] == "api-key-1"
        assert push_request.url.path == USSD_PUSH_PATH
        assert push_request.headers["Authorization"] == "Bearer abc"
        body = json.loads(push_request.content)
        assert body["phoneNumber"] == "255712345678"
        assert body["amount"] == "1500.00"
        assert verify_checksum(body, checksum_key)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_is_cached(self, gateway_settings: Settings) -> None:
        token_calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                token_calls.append(request)
                return token_response()
            return httpx.Response(200, json={"id": "po-1"})

        client = build_client(gateway_settings, handler)
        await client.initiate_payout(Decimal("10"), "TZS", "WTH1", "255712345678")
        await client.initiate_payout(Decimal("10"), "TZS", "WTH2", "255712345678")
        await client.close()

        assert len(token_calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_credentials(self, gateway_settings: Settings) -> None:
        settings = gateway_settings.model_copy(update={"gateway_client_id": ""})
        client = build_client(settings, lambda request: token_response())

        with pytest.raises(GatewayError) as exc_info:
            await client.generate_token()
        await client.close()

        assert exc_info.value.retryable is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_token(self, gateway_settings: Settings) -> None:
        client = build_client(
            gateway_settings, lambda request: httpx.Response(200, json={"success": False})
        )

        with pytest.raises(GatewayError):
            await client.generate_token()
        await client.close()


class TestRetries:
    """Transient failures are retried, permanent ones are not."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_server_errors_are_retried(
        self, gateway_settings: Settings, no_backoff: None
    ) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return token_response()
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503, json={"message": "busy"})
            return httpx.Response(200, json={"id": "po-1"})

        client = build_client(gateway_settings, handler)
        result = await client.initiate_payout(Decimal("10"), "TZS", "WTH1", "255712345678")
        await client.close()

        assert result == {"id": "po-1"}
        assert len(attempts) == 3
        assert attempts[0].url.path == MOBILE_PAYOUT_PATH

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(
        self, gateway_settings: Settings, no_backoff: None
    ) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return token_response()
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = build_client(gateway_settings, handler)
        with pytest.raises(GatewayError) as exc_info:
            await client.initiate_ussd_push(Decimal("10"), "TZS", "DEPO1", "255712345678")
        await client.close()

        assert exc_info.value.retryable is True
        assert len(attempts) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(
        self, gateway_settings: Settings, no_backoff: None
    ) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return token_response()
            attempts.append(request)
            return httpx.Response(400, json={"message": "bad phone"})

        client = build_client(gateway_settings, handler)
        with pytest.raises(GatewayError) as exc_info:
            await client.initiate_ussd_push(Decimal("10"), "TZS", "DEPO1", "255712345678")
        await client.close()

        assert exc_info.value.retryable is False
        assert len(attempts) == 1
