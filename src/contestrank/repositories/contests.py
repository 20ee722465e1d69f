# src/contestrank/repositories/contests.py

"""Read access to contest data, the rating engine's upstream."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contestrank.db.models import Contest, ContestResult
from contestrank.exceptions import ContestDataError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContestRef:
    """A contest that started inside a period."""

    contest_id: str
    start: datetime


class ContestRepository(Protocol):
    """What the rating engine needs to know about contests."""

    async def get_contests_in_period(
        self, start: datetime, end: datetime
    ) -> list[ContestRef]: ...

    async def get_contest_results(
        self, contest_id: str
    ) -> list[tuple[str, int | None]]: ...

    async def get_contest_players(self, contest_id: str) -> list[str]: ...

    async def get_earliest_contest_date(self) -> str | None: ...

    async def get_contest_game(self, contest_id: str) -> str | None: ...


def _naive_utc(moment: datetime) -> datetime:
    """Contest start times are stored as naive UTC."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


@contextmanager
def _contest_errors(action: str, contest_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        raise ContestDataError(f"Failed to {action}: {e}", contest_id) from e


class SqlContestRepository:
    """ContestRepository backed by the contests / contest_results tables."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def get_contests_in_period(
        self, start: datetime, end: datetime
    ) -> list[ContestRef]:
        """Contests whose start falls in [start, end), oldest first."""
        query = (
            select(Contest.id, Contest.start)
            .where(Contest.start >= _naive_utc(start), Contest.start < _naive_utc(end))
            .order_by(Contest.start, Contest.id)
        )
        with _contest_errors("fetch contests"):
            rows = (await self._db.execute(query)).all()
        return [ContestRef(contest_id=row.id, start=row.start) for row in rows]

    async def get_contest_results(
        self, contest_id: str
    ) -> list[tuple[str, int | None]]:
        query = (
            select(ContestResult.player_id, ContestResult.place)
            .where(ContestResult.contest_id == contest_id)
            .order_by(ContestResult.id)
        )
        with _contest_errors("fetch contest results", contest_id):
            rows = (await self._db.execute(query)).all()

        results: list[tuple[str, int | None]] = []
        for player_id, place in rows:
            if not player_id:
                raise ContestDataError("Contest result missing player_id", contest_id)
            if place is not None and (isinstance(place, bool) or place < 1):
                raise ContestDataError(
                    f"Invalid place {place!r} for player {player_id}", contest_id
                )
            results.append((player_id, place))
        return results

    async def get_contest_players(self, contest_id: str) -> list[str]:
        query = (
            select(ContestResult.player_id)
            .where(ContestResult.contest_id == contest_id)
            .order_by(ContestResult.id)
        )
        with _contest_errors("fetch contest players", contest_id):
            result = await self._db.execute(query)
        return list(dict.fromkeys(result.scalars().all()))

    async def get_earliest_contest_date(self) -> str | None:
        """ISO-8601 start of the oldest contest, or None without contests."""
        with _contest_errors("fetch earliest contest date"):
            earliest = (await self._db.execute(select(func.min(Contest.start)))).scalar()
        if earliest is None:
            return None
        return earliest.strftime("%Y-%m-%dT%H:%M:%SZ")

    async def get_contest_game(self, contest_id: str) -> str | None:
        with _contest_errors("fetch contest game", contest_id):
            return (
                await self._db.execute(
                    select(Contest.game_id).where(Contest.id == contest_id)
                )
            ).scalar_one_or_none()
