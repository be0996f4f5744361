"""
Gateway webhook handler with signature verification and replay protection.

Implements:
- Signature verification (raw-body HMAC header, or embedded payload checksum)
- Replay protection through the unique (webhook_id, event_type) pair in
  ``webhook_logs``
- Event type routing to registered handlers

The log row is inserted before any handler runs, so a second delivery of
the same event for the same id is turned away before it can touch a
balance. A handler failure rolls back the log row with everything else,
leaving the gateway free to retry.
"""
import json
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arena_platform.config import get_settings
from arena_platform.core.checksum import verify_checksum, verify_raw_body_signature
from arena_platform.core.errors import is_unique_violation
from arena_platform.core.exceptions import WebhookError, WebhookSignatureError
from arena_platform.core.payments import PaymentService
from arena_platform.database.models import WebhookLog
from arena_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any], AsyncSession], Awaitable[Dict[str, Any]]]

PAYMENT_SUCCESS_EVENTS = (
    "PAYMENT RECEIVED",
    "PAYMENT_SUCCESSFUL",
    "DEPOSIT RECEIVED",
    "PAYOUT SUCCESSFUL",
)
PAYMENT_FAILURE_EVENTS = ("PAYMENT FAILED", "PAYMENT_EXPIRED", "PAYOUT FAILED")
PAYOUT_REVERSAL_EVENTS = (
    "PAYOUT REFUNDED",
    "PAYMENT_REFUNDED",
    "REFUND_PROCESSED",
    "PAYOUT REVERSED",
)

WEBHOOK_ID_FIELDS = ("id", "paymentId", "transactionId", "paymentReference")


def extract_webhook_id(data: Dict[str, Any]) -> Optional[str]:
    """First present identifier among id, paymentId, transactionId, paymentReference."""
    for field in WEBHOOK_ID_FIELDS:
        value = data.get(field)
        if value not in (None, ""):
            return str(value)
    return None


def extract_order_reference(data: Dict[str, Any]) -> Optional[str]:
    reference = data.get("orderReference") or data.get("id")
    return str(reference) if reference else None


class WebhookHandler:
    """
    Handles gateway webhook events with deduplication and processing.

    Features:
    - Signature verification with the shared checksum key
    - Event deduplication backed by a unique database index
    - Event type routing to appropriate handlers
    """

    def __init__(
        self,
        payment_service: Optional[PaymentService] = None,
        checksum_key: Optional[str] = None,
    ):
        """
        Initialize webhook handler.

        Args:
            payment_service: Service used by the built-in payment handlers
            checksum_key: Shared secret (uses config if not provided)
        """
        self.checksum_key = checksum_key or get_settings().gateway_checksum_key
        self.payment_service = payment_service or PaymentService()
        self.event_handlers: Dict[str, EventHandler] = {}

        for event_type in PAYMENT_SUCCESS_EVENTS:
            self.register_handler(event_type, self.handle_payment_success)
        for event_type in PAYMENT_FAILURE_EVENTS:
            self.register_handler(event_type, self.handle_payment_failed)
        for event_type in PAYOUT_REVERSAL_EVENTS:
            self.register_handler(event_type, self.handle_payout_reversed)

        logger.info("webhook_handler_initialized", event_types=len(self.event_handlers))

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Gateway event name (e.g., 'PAYMENT RECEIVED')
            handler: Async callable taking (event data, db session)
        """
        self.event_handlers[event_type.upper()] = handler

    def verify_signature(
        self, raw_body: bytes, payload: Dict[str, Any], signature: Optional[str]
    ) -> None:
        """
        Verify a delivery came from the gateway.

        A signature header covers the exact raw body; without one, the
        payload must carry its own ``checksum``.

        Raises:
            WebhookError: If no signature is present
            WebhookSignatureError: If the signature does not match
        """
        if signature:
            if not verify_raw_body_signature(raw_body, signature, self.checksum_key):
                logger.error("webhook_signature_verification_failed", source="header")
                raise WebhookSignatureError()
            return

        for candidate in (payload, payload.get("data")):
            if isinstance(candidate, dict) and candidate.get("checksum"):
                if not verify_checksum(candidate, self.checksum_key):
                    logger.error("webhook_signature_verification_failed", source="checksum")
                    raise WebhookSignatureError()
                return

        raise WebhookError("Missing webhook signature", code="MISSING_SIGNATURE")

    @staticmethod
    def parse_payload(raw_body: bytes) -> Dict[str, Any]:
        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise WebhookError("Invalid JSON payload", code="INVALID_PAYLOAD") from e
        if not isinstance(payload, dict):
            raise WebhookError("Webhook payload must be an object", code="INVALID_PAYLOAD")
        return payload

    async def handle_delivery(
        self, db: AsyncSession, raw_body: bytes, signature: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Verify, deduplicate and process one webhook delivery.

        Args:
            db: Database session
            raw_body: Exact request body
            signature: Signature header value, if any

        Returns:
            Dict[str, Any]: Processing result
        """
        payload = self.parse_payload(raw_body)
        self.verify_signature(raw_body, payload, signature)

        event_type = payload.get("event") or payload.get("eventType")
        data = payload.get("data")
        if not event_type or not isinstance(data, dict):
            raise WebhookError("Webhook must carry an event and a data object", code="INVALID_PAYLOAD")

        webhook_id = extract_webhook_id(data)
        if webhook_id is None:
            raise WebhookError("Webhook data has no identifier", code="MISSING_WEBHOOK_ID")

        return await self.process_event(
            db,
            webhook_id=webhook_id,
            event_type=str(event_type).upper(),
            data=data,
            payload=payload,
            raw_body=raw_body,
            signature=signature,
        )

    async def _already_logged(self, db: AsyncSession, webhook_id: str, event_type: str) -> bool:
        stmt = select(WebhookLog.id).where(
            WebhookLog.webhook_id == webhook_id, WebhookLog.event_type == event_type
        )
        return (await db.execute(stmt)).first() is not None

    @staticmethod
    def _duplicate(webhook_id: str, event_type: str) -> Dict[str, Any]:
        return {
            "status": "duplicate",
            "webhook_id": webhook_id,
            "event_type": event_type,
            "message": "Event already processed",
        }

    async def process_event(
        self,
        db: AsyncSession,
        webhook_id: str,
        event_type: str,
        data: Dict[str, Any],
        payload: Optional[Dict[str, Any]] = None,
        raw_body: Optional[bytes] = None,
        signature: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Process a verified webhook event.

        Args:
            db: Database session
            webhook_id: Gateway identifier of the delivery
            event_type: Upper-case event name
            data: Event data object
            payload: Full payload, logged for audit
            raw_body: Exact body, logged for audit
            signature: Signature header, logged for audit

        Returns:
            Dict[str, Any]: Processing result

        Raises:
            WebhookError: If the event handler fails
        """
        started = time.perf_counter()
        logger.info("processing_webhook_event", webhook_id=webhook_id, event_type=event_type)

        if await self._already_logged(db, webhook_id, event_type):
            logger.info("webhook_event_already_processed", webhook_id=webhook_id, source="precheck")
            metrics.record_webhook_event(event_type, "duplicate", time.perf_counter() - started)
            return self._duplicate(webhook_id, event_type)

        log = WebhookLog(
            webhook_id=webhook_id,
            event_type=event_type,
            order_reference=extract_order_reference(data),
            payload=payload if payload is not None else {"data": data},
            raw_payload=raw_body.decode("utf-8", errors="replace") if raw_body else None,
            signature_header=signature,
            status="processing",
        )
        try:
            db.add(log)
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            if not is_unique_violation(e):
                raise
            logger.info(
                "webhook_event_already_processed", webhook_id=webhook_id, source="unique_violation"
            )
            metrics.record_webhook_event(event_type, "duplicate", time.perf_counter() - started)
            return self._duplicate(webhook_id, event_type)

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.warning("webhook_no_handler", webhook_id=webhook_id, event_type=event_type)
            status = "no_handler"
            result: Dict[str, Any] = {
                "message": f"No handler registered for event type: {event_type}"
            }
        else:
            try:
                result = await handler(data, db)
            except Exception as e:
                await db.rollback()
                logger.error(
                    "webhook_event_processing_failed",
                    webhook_id=webhook_id,
                    event_type=event_type,
                    error=str(e),
                )
                metrics.record_webhook_event(event_type, "failed", time.perf_counter() - started)
                raise WebhookError(
                    f"Failed to process event {webhook_id}: {e}",
                    code="WEBHOOK_PROCESSING_FAILED",
                    status_code=500,
                ) from e
            status = "success"

        log.status = "completed"
        log.result = {"status": status, **result}
        log.processed_at = datetime.now(timezone.utc)
        await db.flush()

        metrics.record_webhook_event(event_type, status, time.perf_counter() - started)
        logger.info("webhook_event_processed", webhook_id=webhook_id, event_type=event_type, status=status)

        return {
            "status": status,
            "webhook_id": webhook_id,
            "event_type": event_type,
            "result": result,
        }

    async def _find_record(self, data: Dict[str, Any], db: AsyncSession):
        reference = extract_order_reference(data)
        if reference is None:
            return None, None
        return reference, await self.payment_service.find_by_reference(db, reference)

    async def handle_payment_success(
        self, data: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Credit a confirmed deposit, or complete a paid-out withdrawal."""
        reference, record = await self._find_record(data, db)
        if record is None:
            logger.warning("webhook_payment_not_found", order_reference=reference)
            return {"processed": False, "order_reference": reference, "reason": "payment_not_found"}

        if record.transaction.type == "deposit":
            changed = await self.payment_service.complete_deposit(db, record, data)
        else:
            changed = await self.payment_service.complete_withdrawal(db, record, data)
        return {"processed": changed, "order_reference": reference, "payment_status": record.status}

    async def handle_payment_failed(
        self, data: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Fail a pending payment; reserved withdrawal funds are refunded."""
        reference, record = await self._find_record(data, db)
        if record is None:
            logger.warning("webhook_payment_not_found", order_reference=reference)
            return {"processed": False, "order_reference": reference, "reason": "payment_not_found"}

        changed = await self.payment_service.fail_payment(db, record, data)
        return {"processed": changed, "order_reference": reference, "payment_status": record.status}

    async def handle_payout_reversed(
        self, data: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Refund a withdrawal the gateway sent back."""
        reference, record = await self._find_record(data, db)
        if record is None:
            logger.warning("webhook_payment_not_found", order_reference=reference)
            return {"processed": False, "order_reference": reference, "reason": "payment_not_found"}

        changed = await self.payment_service.reverse_payout(db, record, data)
        return {"processed": changed, "order_reference": reference, "payment_status": record.status}
