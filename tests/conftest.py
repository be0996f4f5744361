"""
Pytest configuration and fixtures.
"""
import os

TEST_CHECKSUM_KEY = "test-checksum-key"

os.environ["GATEWAY_CHECKSUM_KEY"] = TEST_CHECKSUM_KEY
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./arena_test.db"
os.environ["ENCRYPTION_SECRET"] = "test-encryption-secret"
os.environ["APP_ENV"] = "test"
os.environ["GATEWAY_CLIENT_ID"] = ""

from decimal import Decimal
from types import SimpleNamespace
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from arena_platform.api.main import app
from arena_platform.database.connection import get_db
from arena_platform.database.models import (
    Base,
    Match,
    Tournament,
    TournamentParticipant,
    User,
)


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests that hit the database or the API")
    config.addinivalue_line("markers", "race: concurrent retry scenarios")


@pytest.fixture
def checksum_key() -> str:
    """Shared secret the gateway signs webhooks with in tests."""
    return TEST_CHECKSUM_KEY


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """File-backed SQLite database per test, foreign keys enforced."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}",
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> SimpleNamespace:
    """
    Two players in one tournament, an admin, and a match awaiting confirmation.

    Player one holds 10,000 TZS.
    """
    async with session_factory() as session:
        player1 = User(
            username="kibo",
            email="kibo@example.com",
            role="player",
            wallet_balance=Decimal("10000.00"),
            wallet_currency="TZS",
        )
        player2 = User(username="zuri", email="zuri@example.com", role="player", wallet_currency="TZS")
        outsider = User(username="tembo", email="tembo@example.com", role="player")
        admin = User(username="ref", email="ref@example.com", role="admin")
        tournament = Tournament(name="Dar Cup", status="in_progress", currency="TZS")
        session.add_all([player1, player2, outsider, admin, tournament])
        await session.flush()

        participant1 = TournamentParticipant(
            tournament_id=tournament.id, user_id=player1.id, gamer_tag="KiboFC"
        )
        participant2 = TournamentParticipant(
            tournament_id=tournament.id, user_id=player2.id, gamer_tag="ZuriUnited"
        )
        session.add_all([participant1, participant2])
        await session.flush()

        match = Match(
            tournament_id=tournament.id,
            round_number=1,
            participant1_id=participant1.id,
            participant2_id=participant2.id,
            participant1_score=2,
            participant2_score=1,
            status="awaiting_confirmation",
        )
        session.add(match)
        await session.commit()

        return SimpleNamespace(
            player1_id=player1.id,
            player2_id=player2.id,
            outsider_id=outsider.id,
            admin_id=admin.id,
            tournament_id=tournament.id,
            participant1_id=participant1.id,
            participant2_id=participant2.id,
            match_id=match.id,
        )


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client bound to the per-test database."""

    async def _get_test_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
