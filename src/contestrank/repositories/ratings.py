# src/contestrank/repositories/ratings.py

"""The rating stores: latest snapshot per player and scope, plus history."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contestrank.db.models import RatingHistory, RatingLatest
from contestrank.exceptions import PersistenceError
from contestrank.rating.glicko2_engine import RatingState
from contestrank.rating.records import HistoryPoint, LatestRecord, RatingScope

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under the bound-parameter limits of every backend.
_ID_CHUNK = 500


@contextmanager
def _store_errors(action: str, period_end: str | None = None) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to {action}: {e}", period_end) from e


def _latest_to_record(row: RatingLatest) -> LatestRecord:
    return LatestRecord(
        player_id=row.player_id,
        scope=RatingScope(row.scope_type, row.scope_id),
        state=RatingState(rating=row.rating, rd=row.rd, volatility=row.volatility),
        games_played=row.games_played,
        last_period_end=row.last_period_end,
        updated_at=row.updated_at,
    )


def _history_to_point(row: RatingHistory) -> HistoryPoint:
    return HistoryPoint(
        player_id=row.player_id,
        scope=RatingScope(row.scope_type, row.scope_id),
        period_end=row.period_end,
        state=RatingState(rating=row.rating, rd=row.rd, volatility=row.volatility),
        period_games=row.period_games,
        wins=row.wins,
        losses=row.losses,
        draws=row.draws,
    )


class RatingRepository:
    """
    Reads and writes the rating_latest and rating_history tables.

    Write methods only flush; `save_period` (or an explicit `commit`) ends
    the transaction so that one period is committed as a whole.
    """

    def __init__(self, db: AsyncSession):
        self._db = db

    # ----------------------------------------------------------------------
    # Reads used by the orchestrator
    # ----------------------------------------------------------------------

    def _scope_filter(self, model, scope: RatingScope):
        return (model.scope_type == scope.scope_type, model.scope_id == scope.scope_id)

    async def get_latest_records(
        self, scope: RatingScope, player_ids: Iterable[str] | None = None
    ) -> dict[str, LatestRecord]:
        """Latest records in `scope`, keyed by player; all of them if no ids given."""
        rows = await self._latest_rows(scope, player_ids)
        return {player_id: _latest_to_record(row) for player_id, row in rows.items()}

    async def get_all_latest_player_ids(self, scope: RatingScope) -> list[str]:
        query = (
            select(RatingLatest.player_id)
            .where(*self._scope_filter(RatingLatest, scope))
            .order_by(RatingLatest.player_id)
        )
        with _store_errors("fetch latest player ids"):
            result = await self._db.execute(query)
        return list(result.scalars().all())

    async def _latest_rows(
        self, scope: RatingScope, player_ids: Iterable[str] | None
    ) -> dict[str, RatingLatest]:
        base = select(RatingLatest).where(*self._scope_filter(RatingLatest, scope))
        rows: dict[str, RatingLatest] = {}
        with _store_errors("fetch latest ratings"):
            if player_ids is None:
                for row in (await self._db.execute(base)).scalars():
                    rows[row.player_id] = row
                return rows
            ids = sorted(set(player_ids))
            for i in range(0, len(ids), _ID_CHUNK):
                chunk = ids[i : i + _ID_CHUNK]
                query = base.where(RatingLatest.player_id.in_(chunk))
                for row in (await self._db.execute(query)).scalars():
                    rows[row.player_id] = row
        return rows

    # ----------------------------------------------------------------------
    # Writes
    # ----------------------------------------------------------------------

    def _apply_latest(
        self, existing: RatingLatest | None, record: LatestRecord, now: datetime
    ) -> RatingLatest:
        row = existing or RatingLatest(
            player_id=record.player_id,
            scope_type=record.scope.scope_type,
            scope_id=record.scope.scope_id,
        )
        row.rating = record.state.rating
        row.rd = record.state.rd
        row.volatility = record.state.volatility
        row.games_played = record.games_played
        row.last_period_end = record.last_period_end
        row.updated_at = record.updated_at or now
        if existing is None:
            self._db.add(row)
        return row

    async def upsert_latest(self, record: LatestRecord) -> None:
        """Replace-by-key write of one latest record (flushed, not committed)."""
        with _store_errors("upsert latest rating", record.last_period_end):
            rows = await self._latest_rows(record.scope, [record.player_id])
            self._apply_latest(
                rows.get(record.player_id), record, datetime.now(timezone.utc)
            )
            await self._db.flush()

    async def append_history(self, point: HistoryPoint) -> None:
        """Insert-only write of one history point (flushed, not committed)."""
        with _store_errors("insert rating history", point.period_end):
            self._db.add(self._history_row(point))
            await self._db.flush()

    def _history_row(self, point: HistoryPoint) -> RatingHistory:
        return RatingHistory(
            player_id=point.player_id,
            scope_type=point.scope.scope_type,
            scope_id=point.scope.scope_id,
            period_end=point.period_end,
            rating=point.state.rating,
            rd=point.state.rd,
            volatility=point.state.volatility,
            period_games=point.period_games,
            wins=point.wins,
            losses=point.losses,
            draws=point.draws,
        )

    async def replace_period_history(self, scope: RatingScope, period_end: str) -> int:
        """Drops a period's history points in `scope`, ahead of rewriting them."""
        statement = delete(RatingHistory).where(
            *self._scope_filter(RatingHistory, scope),
            RatingHistory.period_end == period_end,
        )
        with _store_errors("clear period history", period_end):
            result = await self._db.execute(statement)
        return result.rowcount or 0

    async def save_period(
        self,
        scope: RatingScope,
        period_end: str,
        records: Sequence[LatestRecord],
        points: Sequence[HistoryPoint],
    ) -> None:
        """
        Writes one closed period and commits it as a single transaction.

        Any failure rolls the whole period back, so no player is left with
        a state from a period the others never reached.

        Raises:
            PersistenceError: If any write or the commit fails.
        """
        now = datetime.now(timezone.utc)
        try:
            with _store_errors("persist period", period_end):
                existing = await self._latest_rows(
                    scope, [record.player_id for record in records]
                )
                for record in records:
                    self._apply_latest(existing.get(record.player_id), record, now)
                await self.replace_period_history(scope, period_end)
                self._db.add_all([self._history_row(point) for point in points])
                await self._db.flush()
                await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        logger.debug(
            "Period committed",
            extra={
                "scope": str(scope),
                "period_end": period_end,
                "records": len(records),
            },
        )

    async def clear_scope(self, scope: RatingScope) -> None:
        """Deletes every latest record and history point of `scope`."""
        try:
            with _store_errors("clear ratings"):
                await self._db.execute(
                    delete(RatingHistory).where(*self._scope_filter(RatingHistory, scope))
                )
                await self._db.execute(
                    delete(RatingLatest).where(*self._scope_filter(RatingLatest, scope))
                )
                await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        logger.info("Cleared rating stores", extra={"scope": str(scope)})

    async def commit(self) -> None:
        with _store_errors("commit ratings"):
            await self._db.commit()

    async def rollback(self) -> None:
        await self._db.rollback()

    # ----------------------------------------------------------------------
    # Queries
    # ----------------------------------------------------------------------

    async def get_leaderboard(
        self, scope: RatingScope, min_games: int, limit: int
    ) -> list[LatestRecord]:
        """
        Players with at least `min_games`, best rating first.

        Ties on rating go to the player with more games, then by player id.
        """
        query = (
            select(RatingLatest)
            .where(
                *self._scope_filter(RatingLatest, scope),
                RatingLatest.games_played >= min_games,
            )
            .order_by(
                RatingLatest.rating.desc(),
                RatingLatest.games_played.desc(),
                RatingLatest.player_id,
            )
            .limit(limit)
        )
        with _store_errors("fetch leaderboard"):
            rows = (await self._db.execute(query)).scalars().all()
        return [_latest_to_record(row) for row in rows]

    async def get_player_ratings(self, player_id: str) -> list[LatestRecord]:
        """A player's latest records across all scopes."""
        query = (
            select(RatingLatest)
            .where(RatingLatest.player_id == player_id)
            .order_by(RatingLatest.scope_type.desc(), RatingLatest.scope_id)
        )
        with _store_errors("fetch player ratings"):
            rows = (await self._db.execute(query)).scalars().all()
        return [_latest_to_record(row) for row in rows]

    async def get_player_rating_history(
        self, player_id: str, scope: RatingScope, max_points: int
    ) -> list[HistoryPoint]:
        """The most recent `max_points` history points, oldest first."""
        query = (
            select(RatingHistory)
            .where(
                RatingHistory.player_id == player_id,
                *self._scope_filter(RatingHistory, scope),
            )
            .order_by(RatingHistory.period_end.desc())
            .limit(max_points)
        )
        with _store_errors("fetch rating history"):
            rows = (await self._db.execute(query)).scalars().all()
        return [_history_to_point(row) for row in reversed(rows)]
