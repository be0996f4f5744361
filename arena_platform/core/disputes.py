"""
Dispute lifecycle for contested match results.

States: open (initial) -> under_review -> resolved (terminal). An admin may
resolve straight from open. Resolution writes status, resolver and
closed_at in the same flush, so the database never sees one without the
others.
"""
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from arena_platform.core.exceptions import (
    ArenaError,
    DisputeNotFoundError,
    InvalidDisputeTransitionError,
    MatchNotFoundError,
    ValidationFailedError,
)
from arena_platform.database.models import Dispute, Match, TournamentParticipant
from arena_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

OPEN = "open"
UNDER_REVIEW = "under_review"
RESOLVED = "resolved"

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OPEN: frozenset({UNDER_REVIEW, RESOLVED}),
    UNDER_REVIEW: frozenset({RESOLVED}),
    RESOLVED: frozenset(),
}

AWAITING_CONFIRMATION = "awaiting_confirmation"
DISPUTED = "disputed"


class NotMatchParticipantError(ArenaError):
    def __init__(self) -> None:
        super().__init__(
            "You are not a participant of this match.",
            code="NOT_A_PARTICIPANT",
            status_code=403,
        )


class MatchNotAwaitingConfirmationError(ArenaError):
    def __init__(self) -> None:
        super().__init__(
            "Match is not awaiting confirmation.",
            code="MATCH_NOT_AWAITING_CONFIRMATION",
            status_code=400,
        )


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def _check_transition(dispute: Dispute, to_status: str) -> None:
    if not can_transition(dispute.status, to_status):
        raise InvalidDisputeTransitionError(dispute.status, to_status)


def _dispute_graph() -> tuple:
    return (
        selectinload(Dispute.match)
        .selectinload(Match.participant1)
        .selectinload(TournamentParticipant.user),
        selectinload(Dispute.match)
        .selectinload(Match.participant2)
        .selectinload(TournamentParticipant.user),
        selectinload(Dispute.match).selectinload(Match.tournament),
        selectinload(Dispute.raised_by),
        selectinload(Dispute.resolved_by),
    )


async def get_dispute(db: AsyncSession, dispute_id: int) -> Dispute:
    """
    Fetch a dispute with its match, both participants and their users, the
    tournament, and the users who raised and resolved it.

    Raises:
        DisputeNotFoundError: If no dispute has this id
    """
    stmt = (
        select(Dispute)
        .where(Dispute.id == dispute_id)
        .options(*_dispute_graph())
        .execution_options(populate_existing=True)
    )
    dispute = (await db.execute(stmt)).scalar_one_or_none()
    if dispute is None:
        raise DisputeNotFoundError(dispute_id)
    return dispute


async def list_disputes(
    db: AsyncSession,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dispute]:
    """Disputes for the admin queue, newest first."""
    stmt = select(Dispute).options(*_dispute_graph())
    if status:
        stmt = stmt.where(Dispute.status == status)
    stmt = stmt.order_by(Dispute.created_at.desc(), Dispute.id.desc()).limit(limit).offset(offset)
    return list((await db.execute(stmt)).scalars().all())


async def _load_for_update(db: AsyncSession, dispute_id: int) -> Dispute:
    stmt = select(Dispute).where(Dispute.id == dispute_id).with_for_update()
    dispute = (await db.execute(stmt)).scalar_one_or_none()
    if dispute is None:
        raise DisputeNotFoundError(dispute_id)
    return dispute


async def raise_dispute(
    db: AsyncSession,
    match_id: int,
    user_id: int,
    reason: str,
    evidence_url: Optional[str] = None,
) -> Dispute:
    """
    Contest a reported score.

    Only a participant may dispute, and only while the match awaits
    confirmation. The match moves to ``disputed``.

    Args:
        db: Database session
        match_id: Contested match
        user_id: User raising the dispute
        reason: Free-text reason
        evidence_url: Optional link to screenshots or recordings

    Returns:
        Dispute: The new dispute, status ``open``
    """
    if not reason or not reason.strip():
        raise ValidationFailedError("A reason is required to raise a dispute.")

    match = (
        await db.execute(select(Match).where(Match.id == match_id).with_for_update())
    ).scalar_one_or_none()
    if match is None:
        raise MatchNotFoundError(match_id)

    participant = (
        await db.execute(
            select(TournamentParticipant.id).where(
                TournamentParticipant.id.in_(match.participant_ids()),
                TournamentParticipant.user_id == user_id,
            )
        )
    ).first()
    if participant is None:
        raise NotMatchParticipantError()

    if match.status != AWAITING_CONFIRMATION:
        raise MatchNotAwaitingConfirmationError()

    dispute = Dispute(
        match_id=match_id,
        raised_by_user_id=user_id,
        reason=reason.strip(),
        evidence_url=evidence_url,
        status=OPEN,
    )
    db.add(dispute)
    match.status = DISPUTED
    await db.flush()

    logger.info("dispute_raised", dispute_id=dispute.id, match_id=match_id, user_id=user_id)
    return dispute


async def begin_review(db: AsyncSession, dispute_id: int, admin_id: int) -> Dispute:
    """Move an open dispute under review."""
    dispute = await _load_for_update(db, dispute_id)
    from_status = dispute.status
    _check_transition(dispute, UNDER_REVIEW)

    dispute.status = UNDER_REVIEW
    await db.flush()

    metrics.record_dispute_transition(from_status, UNDER_REVIEW)
    logger.info("dispute_under_review", dispute_id=dispute_id, admin_id=admin_id)
    return dispute


async def resolve_dispute(
    db: AsyncSession,
    dispute_id: int,
    admin_id: int,
    resolution_details: str,
    winner_participant_id: Optional[int] = None,
) -> Dispute:
    """
    Close a dispute.

    Args:
        db: Database session
        dispute_id: Dispute to close
        admin_id: Resolving admin
        resolution_details: Outcome explanation shown to both players
        winner_participant_id: If given, completes the match with this winner

    Returns:
        Dispute: The resolved dispute

    Raises:
        DisputeNotFoundError: If the dispute does not exist
        InvalidDisputeTransitionError: If the dispute is already resolved
        ValidationFailedError: If details are missing or the winner is not
            a participant of the match
    """
    if not resolution_details or not resolution_details.strip():
        raise ValidationFailedError("Resolution details are required.")
    if not admin_id:
        raise ValidationFailedError("A resolving admin is required.")

    dispute = await _load_for_update(db, dispute_id)
    from_status = dispute.status
    _check_transition(dispute, RESOLVED)

    now = datetime.now(timezone.utc)
    if winner_participant_id is not None:
        match = await db.get(Match, dispute.match_id)
        if match is None:
            raise MatchNotFoundError(dispute.match_id)
        if winner_participant_id not in match.participant_ids():
            raise ValidationFailedError("Winner must be a participant of the disputed match.")
        match.status = "completed"
        match.winner_id = winner_participant_id
        match.confirmed_by_user_id = admin_id
        match.confirmed_at = now

    dispute.status = RESOLVED
    dispute.resolution_details = resolution_details.strip()
    dispute.resolved_by_admin_id = admin_id
    dispute.closed_at = now
    await db.flush()

    metrics.record_dispute_transition(from_status, RESOLVED)
    logger.info(
        "dispute_resolved",
        dispute_id=dispute_id,
        admin_id=admin_id,
        from_status=from_status,
        winner_participant_id=winner_participant_id,
    )
    return dispute
