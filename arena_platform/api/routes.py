"""
API routes for wallets, gateway webhooks and match disputes.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from arena_platform.core import disputes as dispute_service
from arena_platform.core.currency import require_currency
from arena_platform.core.exceptions import DisputeNotFoundError
from arena_platform.core.match_resolution import record_forfeit
from arena_platform.core.payments import PaymentService
from arena_platform.database.connection import get_db
from arena_platform.database.models import PaymentRecord, User
from arena_platform.integrations.webhook_handler import WebhookHandler
from arena_platform.monitoring.health import HealthCheck

from .dependencies import (
    get_current_admin,
    get_current_user_id,
    get_payment_service,
    get_webhook_handler,
)
from .schemas import (
    DepositRequest,
    DisputeDetailResponse,
    DisputeListResponse,
    DisputeResponse,
    ForfeitRequest,
    HealthCheckResponse,
    MatchResponse,
    PaymentRecordResponse,
    RaiseDisputeRequest,
    ResolveDisputeRequest,
    TransactionResponse,
    WebhookResponse,
    WithdrawalRequest,
)

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Gateway-Signature"

# Create routers
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
dispute_router = APIRouter(tags=["disputes"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


def _payment_response(record: PaymentRecord, created: bool, response: Response) -> PaymentRecordResponse:
    # Replays answer 200 with the original record
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return PaymentRecordResponse.model_validate(record)


@payment_router.post(
    "/deposits",
    response_model=PaymentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a deposit",
    description="Create a deposit; repeating a request with the same idempotency key returns the original",
)
async def create_deposit(
    request: DepositRequest,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentRecordResponse:
    """Create a deposit. Idempotent per (user, idempotency key)."""
    logger.info(
        "api_create_deposit_request",
        user_id=user_id,
        amount=str(request.amount),
        currency=request.currency,
    )
    record, created = await payment_service.create_deposit(
        db,
        user_id=user_id,
        amount=request.amount,
        currency=request.currency,
        idempotency_key=request.idempotency_key,
        phone_number=request.phone_number,
        metadata=request.metadata,
    )
    return _payment_response(record, created, response)


@payment_router.post(
    "/withdrawals",
    response_model=PaymentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw to mobile money",
)
async def create_withdrawal(
    request: WithdrawalRequest,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    request_currency: str = Depends(require_currency),
    db: AsyncSession = Depends(get_db),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentRecordResponse:
    """
    Reserve funds and send a payout. Idempotent per (user, idempotency key).

    The caller must name the payout currency in ``X-Currency`` (or
    ``?currency=``); it has to match the wallet.
    """
    logger.info("api_create_withdrawal_request", user_id=user_id, amount=str(request.amount))
    record, created = await payment_service.create_withdrawal(
        db,
        user_id=user_id,
        amount=request.amount,
        phone_number=request.phone_number,
        currency=request.currency or request_currency,
        idempotency_key=request.idempotency_key,
        metadata=request.metadata,
    )
    return _payment_response(record, created, response)


@payment_router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a wallet transaction",
)
async def get_transaction(
    transaction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    transaction = await PaymentService.get_transaction(db, transaction_id, user_id)
    return TransactionResponse.model_validate(transaction)


@webhook_router.post(
    "/gateway",
    response_model=WebhookResponse,
    summary="Payment gateway webhook endpoint",
    description="Handle payment gateway webhook events",
)
async def gateway_webhook(
    request: Request,
    signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
    db: AsyncSession = Depends(get_db),
    webhook_handler: WebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    """
    Handle gateway webhook events.

    Replayed deliveries answer 200 with status ``duplicate`` and change nothing.
    """
    body = await request.body()
    return await webhook_handler.handle_delivery(db, body, signature)


@dispute_router.post(
    "/matches/{match_id}/disputes",
    response_model=DisputeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Dispute a reported score",
)
async def raise_dispute(
    match_id: int,
    request: RaiseDisputeRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    dispute = await dispute_service.raise_dispute(
        db,
        match_id=match_id,
        user_id=user_id,
        reason=request.reason,
        evidence_url=request.evidence_url,
    )
    return DisputeResponse.model_validate(dispute)


@dispute_router.get(
    "/disputes/{dispute_id}",
    response_model=DisputeDetailResponse,
    summary="Get a dispute with its match and participants",
    responses={404: {"description": "Dispute not found"}},
)
async def get_dispute(dispute_id: int, db: AsyncSession = Depends(get_db)) -> Any:
    try:
        dispute = await dispute_service.get_dispute(db, dispute_id)
    except DisputeNotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"message": "Dispute not found."},
        )
    return DisputeDetailResponse.model_validate(dispute)


@admin_router.get(
    "/disputes",
    response_model=DisputeListResponse,
    summary="List disputes",
)
async def list_disputes(
    dispute_status: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> DisputeListResponse:
    disputes = await dispute_service.list_disputes(db, status=dispute_status, limit=limit, offset=offset)
    items = [DisputeDetailResponse.model_validate(dispute) for dispute in disputes]
    return DisputeListResponse(disputes=items, count=len(items))


@admin_router.post(
    "/disputes/{dispute_id}/review",
    response_model=DisputeDetailResponse,
    summary="Start reviewing a dispute",
)
async def begin_review(
    dispute_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> DisputeDetailResponse:
    await dispute_service.begin_review(db, dispute_id, admin.id)
    dispute = await dispute_service.get_dispute(db, dispute_id)
    return DisputeDetailResponse.model_validate(dispute)


@admin_router.post(
    "/disputes/{dispute_id}/resolve",
    response_model=DisputeDetailResponse,
    summary="Resolve a dispute",
)
async def resolve_dispute(
    dispute_id: int,
    request: ResolveDisputeRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> DisputeDetailResponse:
    logger.info("api_resolve_dispute_request", dispute_id=dispute_id, admin_id=admin.id)
    await dispute_service.resolve_dispute(
        db,
        dispute_id,
        admin_id=admin.id,
        resolution_details=request.resolution_details,
        winner_participant_id=request.winner_id,
    )
    dispute = await dispute_service.get_dispute(db, dispute_id)
    return DisputeDetailResponse.model_validate(dispute)


@admin_router.post(
    "/matches/{match_id}/forfeit",
    response_model=MatchResponse,
    summary="Record a forfeit",
)
async def forfeit_match(
    match_id: int,
    request: ForfeitRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> MatchResponse:
    match = await record_forfeit(
        db,
        match_id,
        forfeit_participant_id=request.forfeit_participant_id,
        reason=request.reason,
        resolved_by=f"admin:{admin.id}",
    )
    return MatchResponse.model_validate(match)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness() -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness() -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,  # Don't include in OpenAPI docs
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
