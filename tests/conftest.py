# tests/conftest.py

"""Pytest configuration and fixtures."""

from datetime import datetime
from typing import AsyncGenerator, Awaitable, Callable

import pytest
from contestrank.db.models import Base, Contest, ContestResult
from contestrank.db.session import get_db
from contestrank.exceptions import ContestDataError
from contestrank.main import app
from contestrank.repositories.contests import ContestRef
from contestrank.services.rating_service import ScopeLocks
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

AddContest = Callable[..., Awaitable[Contest]]


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """A fresh in-memory database per test, shared by every session."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine, expire_on_commit=False, autocommit=False, autoflush=False
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def add_contest(db_session: AsyncSession) -> AddContest:
    """Inserts a contest with its (player_id, place) results."""

    async def _add(
        contest_id: str,
        start: datetime,
        results: list[tuple[str, int | None]],
        game_id: str | None = None,
    ) -> Contest:
        contest = Contest(id=contest_id, start=start, game_id=game_id)
        contest.results = [
            ContestResult(player_id=player_id, place=place)
            for player_id, place in results
        ]
        db_session.add(contest)
        await db_session.commit()
        return contest

    return _add


@pytest.fixture
def locks() -> ScopeLocks:
    return ScopeLocks()


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Fixture to provide an async test client for the API."""

    # Override the get_db dependency to use the test database
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Clean up the override after the test
    del app.dependency_overrides[get_db]


class InMemoryContestRepository:
    """ContestRepository over plain dicts, with switchable failures."""

    def __init__(self) -> None:
        self.contests: dict[str, tuple[datetime, str | None, list]] = {}
        self.broken: set[str] = set()
        self.fail_listing = False

    def add(
        self,
        contest_id: str,
        start: datetime,
        results: list[tuple[str, int | None]],
        game_id: str | None = None,
    ) -> None:
        self.contests[contest_id] = (start, game_id, results)

    async def get_contests_in_period(
        self, start: datetime, end: datetime
    ) -> list[ContestRef]:
        if self.fail_listing:
            raise ContestDataError("contest store unavailable")
        naive_start = start.replace(tzinfo=None)
        naive_end = end.replace(tzinfo=None)
        refs = [
            ContestRef(contest_id, contest_start)
            for contest_id, (contest_start, _, _) in self.contests.items()
            if naive_start <= contest_start < naive_end
        ]
        return sorted(refs, key=lambda ref: (ref.start, ref.contest_id))

    async def get_contest_results(self, contest_id: str) -> list:
        if contest_id in self.broken:
            raise ContestDataError("results unreadable", contest_id)
        return list(self.contests[contest_id][2])

    async def get_contest_players(self, contest_id: str) -> list[str]:
        if contest_id in self.broken:
            raise ContestDataError("players unreadable", contest_id)
        return list(dict.fromkeys(p for p, _ in self.contests[contest_id][2]))

    async def get_earliest_contest_date(self) -> str | None:
        if not self.contests:
            return None
        earliest = min(start for start, _, _ in self.contests.values())
        return earliest.strftime("%Y-%m-%dT%H:%M:%SZ")

    async def get_contest_game(self, contest_id: str) -> str | None:
        return self.contests[contest_id][1]


@pytest.fixture
def contest_repo() -> InMemoryContestRepository:
    return InMemoryContestRepository()
