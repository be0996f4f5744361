"""FastAPI dependencies: caller identity and shared services."""
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from arena_platform.config import get_settings
from arena_platform.core.encryption import EncryptionService
from arena_platform.core.exceptions import ArenaError, ForbiddenError
from arena_platform.core.payments import PaymentService
from arena_platform.database.connection import get_db
from arena_platform.database.models import User
from arena_platform.integrations.gateway_client import GatewayClient
from arena_platform.integrations.webhook_handler import WebhookHandler


class AuthenticationRequiredError(ArenaError):
    def __init__(self) -> None:
        super().__init__("Authentication required.", code="UNAUTHORIZED", status_code=401)


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    """
    Caller identity, set by the upstream auth layer in ``X-User-ID``.

    Raises:
        AuthenticationRequiredError: If the header is missing or malformed
    """
    if not x_user_id or not x_user_id.strip().isdigit():
        raise AuthenticationRequiredError()
    return int(x_user_id.strip())


async def get_current_admin(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The calling user, who must hold the admin role."""
    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationRequiredError()
    if not user.is_admin:
        raise ForbiddenError()
    return user


@lru_cache()
def get_encryption_service() -> EncryptionService:
    settings = get_settings()
    return EncryptionService(secret=settings.encryption_secret, salt=settings.encryption_salt)


@lru_cache()
def get_payment_service() -> PaymentService:
    """Payment service; talks to the gateway only when credentials are configured."""
    settings = get_settings()
    gateway_client = GatewayClient(settings) if settings.gateway_client_id else None
    return PaymentService(gateway_client=gateway_client, encryption=get_encryption_service())


@lru_cache()
def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(payment_service=get_payment_service())


async def close_services() -> None:
    """Close the gateway client held by the cached payment service, if one was built."""
    if get_payment_service.cache_info().currsize:
        gateway_client = get_payment_service().gateway_client
        if gateway_client is not None:
            await gateway_client.close()
    get_webhook_handler.cache_clear()
    get_payment_service.cache_clear()
