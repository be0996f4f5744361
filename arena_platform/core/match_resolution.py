"""
Out-of-band match resolution: forfeits and no-contests.

Recording a forfeit needs no Dispute. The forfeit references on the match
point at the losing participant row and the user behind it; the user is
always derived from the participant, never taken from the caller.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arena_platform.core.exceptions import (
    ArenaError,
    MatchNotFoundError,
    ValidationFailedError,
)
from arena_platform.database.models import Match, TournamentParticipant
from arena_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

FORFEITED = "forfeited"
NO_CONTEST = "no_contest"
SETTLED_MATCH_STATUSES = ("completed", FORFEITED, NO_CONTEST)


@dataclass(frozen=True)
class ParticipantReadiness:
    """Check-in state of one side when a deadline passes."""

    ready: bool = False
    active_confirmed: bool = False


@dataclass(frozen=True)
class ForfeitOutcome:
    outcome: str  # "forfeit" or "no_contest"
    winner_participant_id: Optional[int] = None
    forfeit_participant_id: Optional[int] = None


class MatchAlreadyResolvedError(ArenaError):
    def __init__(self, match_id: int, status: str):
        super().__init__(
            f"Match {match_id} is already {status}.",
            code="MATCH_ALREADY_RESOLVED",
            status_code=409,
        )


def determine_forfeit_outcome(
    match: Match,
    participant1: ParticipantReadiness,
    participant2: ParticipantReadiness,
    live: bool = False,
) -> ForfeitOutcome:
    """
    Decide who forfeits when a match deadline passes.

    Scheduled matches: the side that checked in wins; if both checked in,
    the side that confirmed presence wins. Live matches only look at
    presence confirmation. Anything else is a no-contest.
    """
    p1_id, p2_id = match.participant_ids()

    def forfeit(winner: int, loser: int) -> ForfeitOutcome:
        return ForfeitOutcome("forfeit", winner_participant_id=winner, forfeit_participant_id=loser)

    if not live:
        if participant1.ready and not participant2.ready:
            return forfeit(p1_id, p2_id)
        if participant2.ready and not participant1.ready:
            return forfeit(p2_id, p1_id)
        if not (participant1.ready and participant2.ready):
            return ForfeitOutcome(NO_CONTEST)

    if participant1.active_confirmed and not participant2.active_confirmed:
        return forfeit(p1_id, p2_id)
    if participant2.active_confirmed and not participant1.active_confirmed:
        return forfeit(p2_id, p1_id)
    return ForfeitOutcome(NO_CONTEST)


async def _get_open_match(db: AsyncSession, match_id: int) -> Match:
    match = (
        await db.execute(select(Match).where(Match.id == match_id).with_for_update())
    ).scalar_one_or_none()
    if match is None:
        raise MatchNotFoundError(match_id)
    if match.status in SETTLED_MATCH_STATUSES:
        raise MatchAlreadyResolvedError(match_id, match.status)
    return match


async def record_forfeit(
    db: AsyncSession,
    match_id: int,
    forfeit_participant_id: int,
    reason: str,
    resolved_by: str = "system",
) -> Match:
    """
    Settle a match as forfeited by one participant.

    Args:
        db: Database session
        match_id: Match to settle
        forfeit_participant_id: Participant row of the losing side
        reason: Machine-readable reason, e.g. ``timeout_scheduled_no_show``
        resolved_by: ``system`` or the acting admin's identifier

    Returns:
        Match: The updated match

    Raises:
        MatchNotFoundError: If the match does not exist
        MatchAlreadyResolvedError: If the match is already settled
        ValidationFailedError: If the participant is not in the match
    """
    match = await _get_open_match(db, match_id)
    if forfeit_participant_id not in match.participant_ids():
        raise ValidationFailedError("Forfeiting participant is not part of this match.")

    participant = await db.get(TournamentParticipant, forfeit_participant_id)
    if participant is None:
        raise ValidationFailedError("Forfeiting participant does not exist.")

    p1_id, p2_id = match.participant_ids()
    now = datetime.now(timezone.utc)
    match.status = FORFEITED
    match.winner_id = p2_id if forfeit_participant_id == p1_id else p1_id
    match.resolved_reason = reason
    match.resolved_at = now
    match.resolved_by = resolved_by
    match.forfeit_participant_id = forfeit_participant_id
    match.forfeit_user_id = participant.user_id
    await db.flush()

    metrics.record_match_resolution("forfeit", resolved_by)
    logger.info(
        "match_forfeited",
        match_id=match_id,
        winner_id=match.winner_id,
        forfeit_participant_id=forfeit_participant_id,
        forfeit_user_id=participant.user_id,
        reason=reason,
        resolved_by=resolved_by,
    )
    return match


async def record_no_contest(
    db: AsyncSession,
    match_id: int,
    reason: str,
    resolved_by: str = "system",
) -> Match:
    """Settle a match with no winner."""
    match = await _get_open_match(db, match_id)
    match.status = NO_CONTEST
    match.winner_id = None
    match.resolved_reason = reason
    match.resolved_at = datetime.now(timezone.utc)
    match.resolved_by = resolved_by
    match.forfeit_participant_id = None
    match.forfeit_user_id = None
    await db.flush()

    metrics.record_match_resolution(NO_CONTEST, resolved_by)
    logger.info("match_no_contest", match_id=match_id, reason=reason, resolved_by=resolved_by)
    return match


async def resolve_deadline(
    db: AsyncSession,
    match_id: int,
    participant1: ParticipantReadiness,
    participant2: ParticipantReadiness,
    live: bool = False,
) -> Match:
    """Apply :func:`determine_forfeit_outcome` to a match whose deadline passed."""
    match = await _get_open_match(db, match_id)
    outcome = determine_forfeit_outcome(match, participant1, participant2, live=live)
    if outcome.outcome == NO_CONTEST:
        reason = "timeout_live_no_activity" if live else "timeout_scheduled_no_show"
        return await record_no_contest(db, match_id, reason)
    reason = "timeout_live_inactive" if live else "timeout_scheduled_no_show"
    return await record_forfeit(db, match_id, outcome.forfeit_participant_id, reason)
