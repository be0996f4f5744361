"""External integrations for the payment gateway."""
from .gateway_client import GatewayClient
from .webhook_handler import WebhookHandler

__all__ = ["GatewayClient", "WebhookHandler"]
