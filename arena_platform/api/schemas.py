"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DepositRequest(BaseModel):
    """Request schema for starting a mobile money deposit."""

    amount: Decimal = Field(..., gt=0, description="Amount to deposit")
    currency: Optional[str] = Field(
        default=None, min_length=3, max_length=3, description="Currency code; defaults to the wallet's"
    )
    phone_number: Optional[str] = Field(default=None, description="Mobile money number to prompt")
    idempotency_key: Optional[str] = Field(
        default=None, max_length=255, description="Client retry key; may also be sent in metadata"
    )
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Opaque request metadata")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        """Validate currency format."""
        return v.upper() if v else v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "amount": "5000.00",
                    "currency": "TZS",
                    "phone_number": "255712345678",
                    "metadata": {"idempotency_key": "dep-7f3c9a"},
                }
            ]
        }
    }


class WithdrawalRequest(DepositRequest):
    """Request schema for a mobile money withdrawal."""

    phone_number: str = Field(..., min_length=9, description="Mobile money number to pay")


class PaymentRecordResponse(BaseModel):
    """Payment record as seen by its owner."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: int
    transaction_reference: Optional[str] = None
    user_id: int
    amount: Decimal
    currency: str
    status: str
    payment_method: str
    gateway_payment_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: datetime


class TransactionResponse(BaseModel):
    """Wallet ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    type: str
    amount: Decimal
    currency: str
    balance_before: Decimal
    balance_after: Decimal
    status: str
    transaction_reference: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="success, duplicate or no_handler")
    webhook_id: str
    event_type: str
    result: Optional[Dict[str, Any]] = None
    message: Optional[str] = None


class RaiseDisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    evidence_url: Optional[str] = Field(default=None, max_length=512)


class ResolveDisputeRequest(BaseModel):
    resolution_details: str = Field(..., min_length=1, description="Outcome shown to both players")
    winner_id: Optional[int] = Field(
        default=None, description="Participant id that wins the match, if the ruling names one"
    )


class ForfeitRequest(BaseModel):
    forfeit_participant_id: int = Field(..., description="Participant row of the losing side")
    reason: str = Field(default="admin_forfeit", max_length=100)


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str


class TournamentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    status: str


class ParticipantSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    gamer_tag: Optional[str] = None
    user: Optional[UserSummary] = None


class MatchSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    round_number: int
    status: str
    participant1_score: int
    participant2_score: int
    winner_id: Optional[int] = None
    confirmed_by_user_id: Optional[int] = None
    confirmed_at: Optional[datetime] = None


class MatchResponse(MatchSummary):
    """Match including its out-of-band resolution fields."""

    resolved_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    forfeit_user_id: Optional[int] = None
    forfeit_participant_id: Optional[int] = None


class MatchDetail(MatchSummary):
    tournament: Optional[TournamentSummary] = None
    participant1: Optional[ParticipantSummary] = None
    participant2: Optional[ParticipantSummary] = None


class DisputeResponse(BaseModel):
    """Dispute without related objects."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    match_id: int
    raised_by_user_id: int
    reason: str
    evidence_url: Optional[str] = None
    status: str
    resolution_details: Optional[str] = None
    resolved_by_admin_id: Optional[int] = None
    closed_at: Optional[datetime] = None
    created_at: datetime


class DisputeDetailResponse(DisputeResponse):
    """Dispute with its match, participants, tournament and actors."""

    match: Optional[MatchDetail] = None
    raised_by: Optional[UserSummary] = None
    resolved_by: Optional[UserSummary] = None


class DisputeListResponse(BaseModel):
    disputes: List[DisputeDetailResponse]
    count: int


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Dict[str, Any] = Field(..., description="Individual service checks")
