"""
Tests for the dispute lifecycle.
"""
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena_platform.core.disputes import (
    MatchNotAwaitingConfirmationError,
    NotMatchParticipantError,
    begin_review,
    can_transition,
    get_dispute,
    list_disputes,
    raise_dispute,
    resolve_dispute,
)
from arena_platform.core.exceptions import (
    DisputeNotFoundError,
    InvalidDisputeTransitionError,
    MatchNotFoundError,
    ValidationFailedError,
)
from arena_platform.database.models import Dispute, Match


class TestTransitionTable:
    """Allowed lifecycle edges."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "from_status,to_status,allowed",
        [
            ("open", "under_review", True),
            ("open", "resolved", True),
            ("under_review", "resolved", True),
            ("under_review", "open", False),
            ("resolved", "open", False),
            ("resolved", "under_review", False),
            ("resolved", "resolved", False),
            ("unknown", "resolved", False),
        ],
    )
    def test_can_transition(self, from_status: str, to_status: str, allowed: bool) -> None:
        assert can_transition(from_status, to_status) is allowed


class TestRaiseDispute:
    """Participants contesting a reported score."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_participant_raises_dispute(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        dispute = await raise_dispute(
            test_db, seed.match_id, seed.player2_id, "  Score was 1-2, not 2-1  ", "https://x/clip"
        )

        assert dispute.id is not None
        assert dispute.status == "open"
        assert dispute.reason == "Score was 1-2, not 2-1"
        assert dispute.resolved_by_admin_id is None
        assert dispute.closed_at is None
        match = await test_db.get(Match, seed.match_id)
        assert match.status == "disputed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_outsider_cannot_dispute(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        with pytest.raises(NotMatchParticipantError) as exc_info:
            await raise_dispute(test_db, seed.match_id, seed.outsider_id, "I saw it")

        assert exc_info.value.status_code == 403

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_match_must_await_confirmation(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")

        with pytest.raises(MatchNotAwaitingConfirmationError):
            await raise_dispute(test_db, seed.match_id, seed.player1_id, "Also wrong")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_match(self, test_db: AsyncSession, seed: SimpleNamespace) -> None:
        with pytest.raises(MatchNotFoundError):
            await raise_dispute(test_db, 999_999, seed.player1_id, "Wrong score")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reason_required(self, test_db: AsyncSession, seed: SimpleNamespace) -> None:
        with pytest.raises(ValidationFailedError):
            await raise_dispute(test_db, seed.match_id, seed.player1_id, "   ")


class TestResolution:
    """Admin review and resolution."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_review_then_resolve(self, test_db: AsyncSession, seed: SimpleNamespace) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")

        reviewed = await begin_review(test_db, dispute.id, seed.admin_id)
        assert reviewed.status == "under_review"
        assert reviewed.closed_at is None
        assert reviewed.resolved_by_admin_id is None

        resolved = await resolve_dispute(test_db, dispute.id, seed.admin_id, "Replay confirms 2-1")
        assert resolved.status == "resolved"
        assert resolved.resolution_details == "Replay confirms 2-1"
        assert resolved.resolved_by_admin_id == seed.admin_id
        assert resolved.closed_at is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_resolve_straight_from_open(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")

        resolved = await resolve_dispute(test_db, dispute.id, seed.admin_id, "Obvious typo")

        assert resolved.status == "resolved"
        assert resolved.resolved_by_admin_id == seed.admin_id
        assert resolved.closed_at is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_resolved_is_terminal(self, test_db: AsyncSession, seed: SimpleNamespace) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")
        await resolve_dispute(test_db, dispute.id, seed.admin_id, "Done")

        with pytest.raises(InvalidDisputeTransitionError) as again:
            await resolve_dispute(test_db, dispute.id, seed.admin_id, "Done twice")
        with pytest.raises(InvalidDisputeTransitionError) as review:
            await begin_review(test_db, dispute.id, seed.admin_id)

        assert again.value.status_code == 409
        assert again.value.extra == {"from_status": "resolved", "to_status": "resolved"}
        assert review.value.extra["to_status"] == "under_review"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_review_only_from_open(self, test_db: AsyncSession, seed: SimpleNamespace) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")
        await begin_review(test_db, dispute.id, seed.admin_id)

        with pytest.raises(InvalidDisputeTransitionError):
            await begin_review(test_db, dispute.id, seed.admin_id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_winner_completes_match(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")

        await resolve_dispute(
            test_db,
            dispute.id,
            seed.admin_id,
            "Replay shows 1-2",
            winner_participant_id=seed.participant2_id,
        )

        match = await test_db.get(Match, seed.match_id)
        assert match.status == "completed"
        assert match.winner_id == seed.participant2_id
        assert match.confirmed_by_user_id == seed.admin_id
        assert match.confirmed_at is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_winner_must_be_a_participant(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")

        with pytest.raises(ValidationFailedError):
            await resolve_dispute(
                test_db, dispute.id, seed.admin_id, "Bad winner", winner_participant_id=999_999
            )

        assert dispute.status == "open"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_details_and_admin_required(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")

        with pytest.raises(ValidationFailedError):
            await resolve_dispute(test_db, dispute.id, seed.admin_id, " ")
        with pytest.raises(ValidationFailedError):
            await resolve_dispute(test_db, dispute.id, 0, "Details")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_dispute(self, test_db: AsyncSession, seed: SimpleNamespace) -> None:
        with pytest.raises(DisputeNotFoundError):
            await begin_review(test_db, 999_999, seed.admin_id)
        with pytest.raises(DisputeNotFoundError):
            await resolve_dispute(test_db, 999_999, seed.admin_id, "Details")


class TestQueries:
    """Loading disputes with their graph."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_dispute_loads_full_graph(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        seed: SimpleNamespace,
    ) -> None:
        async with session_factory() as db:
            dispute = await raise_dispute(db, seed.match_id, seed.player2_id, "Wrong score")
            await resolve_dispute(db, dispute.id, seed.admin_id, "Confirmed")
            await db.commit()
            dispute_id = dispute.id

        async with session_factory() as db:
            loaded = await get_dispute(db, dispute_id)

        assert loaded.match.participant1.user.username == "kibo"
        assert loaded.match.participant2.user.username == "zuri"
        assert loaded.match.tournament.name == "Dar Cup"
        assert loaded.raised_by.username == "zuri"
        assert loaded.resolved_by.username == "ref"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_missing_dispute(self, test_db: AsyncSession, seed: SimpleNamespace) -> None:
        with pytest.raises(DisputeNotFoundError) as exc_info:
            await get_dispute(test_db, 999_999)

        assert exc_info.value.to_dict() == {"message": "Dispute not found."}
        assert exc_info.value.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_filters_by_status(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        dispute = await raise_dispute(test_db, seed.match_id, seed.player2_id, "Wrong score")

        assert [d.id for d in await list_disputes(test_db)] == [dispute.id]
        assert [d.id for d in await list_disputes(test_db, status="open")] == [dispute.id]
        assert await list_disputes(test_db, status="resolved") == []


class TestStorageConstraints:
    """The database refuses half-resolved disputes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_resolver_without_closed_at_is_rejected(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        test_db.add(
            Dispute(
                match_id=seed.match_id,
                raised_by_user_id=seed.player1_id,
                reason="x",
                status="resolved",
                resolved_by_admin_id=seed.admin_id,
            )
        )

        with pytest.raises(IntegrityError):
            await test_db.flush()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_closed_at_on_open_dispute_is_rejected(
        self, test_db: AsyncSession, seed: SimpleNamespace
    ) -> None:
        test_db.add(
            Dispute(
                match_id=seed.match_id,
                raised_by_user_id=seed.player1_id,
                reason="x",
                status="open",
                resolved_by_admin_id=seed.admin_id,
                closed_at=datetime.now(timezone.utc),
            )
        )

        with pytest.raises(IntegrityError):
            await test_db.flush()
