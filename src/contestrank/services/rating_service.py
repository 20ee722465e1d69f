# src/contestrank/services/rating_service.py

"""Business logic for monthly rating periods and historical backfills."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from contestrank.exceptions import (
    BackfillInProgressError,
    ComputationError,
    ContestDataError,
    DataAccessError,
)
from contestrank.rating.glicko2_engine import (
    Glicko2Engine,
    Glicko2Params,
    UpdateExplanation,
)
from contestrank.rating.inactivity import (
    Inactive,
    Updated,
    apply_activity,
    resolve_activity,
)
from contestrank.rating.periods import (
    RatingPeriod,
    current_period,
    iter_periods,
    parse_period,
    period_containing,
    resolve_period,
)
from contestrank.rating.records import (
    GLOBAL_SCOPE,
    HistoryPoint,
    LatestRecord,
    RatingScope,
)
from contestrank.rating.samples import PeriodSamples, build_period_samples
from contestrank.repositories.contests import ContestRepository
from contestrank.repositories.ratings import RatingRepository

logger = logging.getLogger(__name__)

# Default number of history points returned per player.
DEFAULT_HISTORY_POINTS = 180


# ===============================================
# Result Types
# ===============================================


@dataclass(frozen=True)
class PeriodSummary:
    """What one period close did."""

    period: str
    scope: str
    period_end: str
    contests_found: int
    contests_rated: int
    contests_skipped: int
    players_updated: int
    players_inflated: int


@dataclass(frozen=True)
class BackfillSummary:
    """What a full historical backfill did."""

    scope: str
    first_period: str | None
    last_period: str | None
    periods_processed: int
    players_rated: int


@dataclass(frozen=True)
class PlayerPeriodExplanation:
    """A dry run of one player's period, for diagnosing surprising ratings."""

    player_id: str
    period: str
    scope: str
    path: str  # "update" or "inflation"
    contests_total: int
    contests_with_player: int
    samples_count: int
    rating_before: float
    rating_after: float
    rd_before: float
    rd_after: float
    opponent_rd_stats: dict[str, float] | None
    internals: UpdateExplanation | None


@dataclass(frozen=True)
class LoadedContest:
    contest_id: str
    players: list[str]
    results: list[tuple[str, int | None]]

    @property
    def player_ids(self) -> set[str]:
        return set(self.players) | {player_id for player_id, _ in self.results}


@dataclass
class _LoadedPeriod:
    contests: list[LoadedContest] = field(default_factory=list)
    found: int = 0
    skipped: int = 0


# ===============================================
# Scope Locks
# ===============================================


class ScopeLocks:
    """
    One asyncio.Lock per rating scope, bound to the running event loop, plus
    the set of scopes with a backfill in flight.
    """

    def __init__(self) -> None:
        self._loop: asyncio.AbstractEventLoop | None = None
        self._locks: dict[RatingScope, asyncio.Lock] = {}
        self._backfills: set[RatingScope] = set()

    def _bind(self) -> None:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            # Locks from a previous loop cannot be awaited on this one.
            self._loop = loop
            self._locks = {}
            self._backfills = set()

    def get(self, scope: RatingScope) -> asyncio.Lock:
        self._bind()
        return self._locks.setdefault(scope, asyncio.Lock())

    def claim_backfill(self, scope: RatingScope) -> bool:
        """Marks a backfill of `scope` as in flight; False if one already is."""
        self._bind()
        if scope in self._backfills:
            return False
        self._backfills.add(scope)
        return True

    def release_backfill(self, scope: RatingScope) -> None:
        self._backfills.discard(scope)


# Shared by every service instance in the process.
scope_locks = ScopeLocks()


def _validate_results(
    contest_id: str, results: Iterable[tuple[str, int | None]]
) -> list[tuple[str, int | None]]:
    """Checks the shape of upstream result rows."""
    checked: list[tuple[str, int | None]] = []
    for row in results:
        try:
            player_id, place = row
        except (TypeError, ValueError):
            raise ContestDataError(f"Malformed result row {row!r}", contest_id) from None
        if not isinstance(player_id, str) or not player_id:
            raise ContestDataError(f"Invalid player id {player_id!r}", contest_id)
        if place is not None and (not isinstance(place, int) or isinstance(place, bool)):
            raise ContestDataError(
                f"Invalid place {place!r} for player {player_id}", contest_id
            )
        checked.append((player_id, place))
    return checked


# ===============================================
# Orchestrator
# ===============================================


class RatingService:
    """
    Drives rating periods: load contests, build samples, update or inflate
    every player, persist.

    Within a period every computation reads the pre-period snapshot only, and
    nothing is written until all players are computed; the period is then
    committed in one transaction. Periods of the same scope never overlap.
    """

    def __init__(
        self,
        ratings: RatingRepository,
        contests: ContestRepository,
        params: Glicko2Params | None = None,
        locks: ScopeLocks | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._ratings = ratings
        self._contests = contests
        self.params = params or Glicko2Params()
        self._engine = Glicko2Engine(self.params)
        self._locks = locks or scope_locks
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def recompute_period(
        self, period: str | None = None, scope: RatingScope = GLOBAL_SCOPE
    ) -> PeriodSummary:
        """
        Closes one period (default: the previous calendar month) in `scope`.

        Raises:
            InvalidPeriodError: If `period` is not "YYYY-MM"; nothing is done.
            DataAccessError: If contests cannot be listed or the period
                cannot be persisted. Nothing of the period is committed.
            ComputationError: If a player's update is numerically broken.
        """
        target = resolve_period(period, self._clock())
        async with self._locks.get(scope):
            started = time.perf_counter()
            _, summary = await self._close_period(target, scope, known=None)
        logger.info(
            "Recomputed period %s for scope %s in %.2fs",
            target.key,
            scope,
            time.perf_counter() - started,
            extra={"period": target.key, "scope": str(scope)},
        )
        return summary

    async def backfill_all_history(
        self, scope: RatingScope = GLOBAL_SCOPE
    ) -> BackfillSummary:
        """
        Rebuilds `scope` from scratch, one month at a time.

        Clears the scope, then folds every month from the earliest contest's
        month through the current month in chronological order. The full
        per-scope state map is carried from one month to the next. A month
        that fails aborts the backfill: later months depend on it.

        A running single-period recompute of `scope` is waited for.

        Raises:
            BackfillInProgressError: If a backfill of `scope` is running.
        """
        if not self._locks.claim_backfill(scope):
            raise BackfillInProgressError(str(scope))
        try:
            return await self._backfill(scope)
        finally:
            self._locks.release_backfill(scope)

    async def _backfill(self, scope: RatingScope) -> BackfillSummary:
        async with self._locks.get(scope):
            started = time.perf_counter()
            logger.info("Starting historical backfill", extra={"scope": str(scope)})
            await self._ratings.clear_scope(scope)

            earliest = await self._contests.get_earliest_contest_date()
            if earliest is None:
                logger.info("No contests found; nothing to backfill")
                return BackfillSummary(str(scope), None, None, 0, 0)

            first = period_containing(earliest)
            last = current_period(self._clock())
            logger.info(
                "Backfilling %s through %s",
                first.key,
                last.key,
                extra={"scope": str(scope), "first": first.key, "last": last.key},
            )

            accumulator: dict[str, LatestRecord] = {}
            processed = 0
            for period in iter_periods(first, last):
                try:
                    accumulator, _ = await self._close_period(period, scope, accumulator)
                except Exception:
                    logger.error(
                        "Backfill aborted at period %s",
                        period.key,
                        extra={"scope": str(scope), "period": period.key},
                        exc_info=True,
                    )
                    raise
                processed += 1

        logger.info(
            "Historical backfill completed in %.2fs",
            time.perf_counter() - started,
            extra={"scope": str(scope), "periods": processed},
        )
        return BackfillSummary(
            scope=str(scope),
            first_period=first.key,
            last_period=last.key,
            periods_processed=processed,
            players_rated=len(accumulator),
        )

    async def _close_period(
        self,
        period: RatingPeriod,
        scope: RatingScope,
        known: dict[str, LatestRecord] | None,
    ) -> tuple[dict[str, LatestRecord], PeriodSummary]:
        """
        Snapshot, compute, commit-all for one period.

        `known` is the pre-period state map when the caller carries it
        (backfill); otherwise it is read from the rating store.
        """
        loaded = await self._load_contests(period, scope)
        if not loaded.contests:
            logger.info(
                "No contests for period %s; applying inactivity inflation",
                period.key,
                extra={"period": period.key, "scope": str(scope)},
            )

        participants: set[str] = set()
        for contest in loaded.contests:
            participants |= contest.player_ids

        # Snapshot
        if known is None:
            existing = await self._ratings.get_all_latest_player_ids(scope)
            candidates = participants | set(existing)
            known = await self._ratings.get_latest_records(scope, candidates)
        else:
            candidates = participants | set(known)

        baseline = {player_id: record.state for player_id, record in known.items()}
        samples = build_period_samples(
            (contest.results for contest in loaded.contests), baseline, self.params
        )

        # Compute
        records, points, updated, inflated = self._compute_period(
            period, scope, sorted(candidates), known, samples
        )

        # Commit
        await self._ratings.save_period(scope, period.end_iso, list(records.values()), points)

        summary = PeriodSummary(
            period=period.key,
            scope=str(scope),
            period_end=period.end_iso,
            contests_found=loaded.found,
            contests_rated=samples.contests_used,
            contests_skipped=loaded.skipped,
            players_updated=updated,
            players_inflated=inflated,
        )
        logger.info(
            "Closed period %s: %d updated, %d inflated",
            period.key,
            updated,
            inflated,
            extra={
                "period": period.key,
                "scope": str(scope),
                "contests": loaded.found,
                "contests_skipped": loaded.skipped,
            },
        )
        return records, summary

    def _compute_period(
        self,
        period: RatingPeriod,
        scope: RatingScope,
        candidates: list[str],
        known: dict[str, LatestRecord],
        samples: PeriodSamples,
    ) -> tuple[dict[str, LatestRecord], list[HistoryPoint], int, int]:
        """New state for every candidate; pure apart from the clock."""
        now = self._clock()
        default_state = self.params.default_state()
        records: dict[str, LatestRecord] = {}
        points: list[HistoryPoint] = []
        updated = inflated = 0

        for player_id in candidates:
            prior = known.get(player_id)
            state = prior.state if prior else default_state
            activity = resolve_activity(
                samples.samples_for(player_id),
                prior.last_period_end if prior else None,
                period.end_iso,
            )
            try:
                new_state = apply_activity(self._engine, state, activity)
            except ComputationError as e:
                e.details.setdefault("player_id", player_id)
                e.details["period"] = period.key
                raise

            if isinstance(activity, Updated):
                updated += 1
            else:
                inflated += 1

            stats = samples.stats_for(player_id)
            records[player_id] = LatestRecord(
                player_id=player_id,
                scope=scope,
                state=new_state,
                games_played=(prior.games_played if prior else 0) + stats.games_played,
                last_period_end=period.end_iso,
                updated_at=now,
            )
            points.append(
                HistoryPoint(
                    player_id=player_id,
                    scope=scope,
                    period_end=period.end_iso,
                    state=new_state,
                    period_games=stats.games_played,
                    wins=stats.wins,
                    losses=stats.losses,
                    draws=stats.draws,
                )
            )

        return records, points, updated, inflated

    async def _load_contests(
        self, period: RatingPeriod, scope: RatingScope
    ) -> _LoadedPeriod:
        """
        Reads the period's contests, best effort per contest.

        A contest whose data cannot be read is logged and skipped; failing to
        list the period's contests at all propagates.
        """
        refs = await self._contests.get_contests_in_period(period.start, period.end)
        loaded = _LoadedPeriod(found=len(refs))
        for ref in refs:
            try:
                if not scope.is_global:
                    game_id = await self._contests.get_contest_game(ref.contest_id)
                    if game_id != scope.game_id:
                        continue
                players = await self._contests.get_contest_players(ref.contest_id)
                results = _validate_results(
                    ref.contest_id, await self._contests.get_contest_results(ref.contest_id)
                )
            except DataAccessError as e:
                loaded.skipped += 1
                logger.warning(
                    "Skipping contest %s: %s",
                    ref.contest_id,
                    e.message,
                    extra={"contest_id": ref.contest_id, "period": period.key},
                )
                continue
            loaded.contests.append(LoadedContest(ref.contest_id, list(players), results))
        return loaded

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_leaderboard(
        self, scope: RatingScope = GLOBAL_SCOPE, min_games: int = 10, limit: int = 50
    ) -> list[LatestRecord]:
        return await self._ratings.get_leaderboard(scope, min_games, limit)

    async def get_player_ratings(self, player_id: str) -> list[LatestRecord]:
        return await self._ratings.get_player_ratings(player_id)

    async def get_player_rating_history(
        self,
        player_id: str,
        scope: RatingScope = GLOBAL_SCOPE,
        max_points: int = DEFAULT_HISTORY_POINTS,
    ) -> list[HistoryPoint]:
        return await self._ratings.get_player_rating_history(
            player_id, scope, max_points
        )

    async def explain_player_period(
        self, player_id: str, period: str, scope: RatingScope = GLOBAL_SCOPE
    ) -> PlayerPeriodExplanation:
        """
        Replays one player's period against the current store, writing nothing.

        Uses the stored latest records as the baseline, so it reflects what
        recomputing the period now would do for this player.
        """
        target = parse_period(period)
        loaded = await self._load_contests(target, scope)
        with_player = [c for c in loaded.contests if player_id in c.player_ids]

        involved = {player_id}
        for contest in with_player:
            involved |= contest.player_ids
        known = await self._ratings.get_latest_records(scope, involved)
        baseline = {pid: record.state for pid, record in known.items()}
        samples = build_period_samples(
            (contest.results for contest in with_player), baseline, self.params
        )

        prior = known.get(player_id)
        before = prior.state if prior else self.params.default_state()
        player_samples = samples.samples_for(player_id)
        activity = resolve_activity(
            player_samples, prior.last_period_end if prior else None, target.end_iso
        )
        after = apply_activity(self._engine, before, activity)

        opponent_rds = sorted(sample.opp_rd for sample in player_samples)
        opponent_rd_stats = None
        if opponent_rds:
            opponent_rd_stats = {
                "count": float(len(opponent_rds)),
                "avg": sum(opponent_rds) / len(opponent_rds),
                "min": opponent_rds[0],
                "max": opponent_rds[-1],
            }

        return PlayerPeriodExplanation(
            player_id=player_id,
            period=target.key,
            scope=str(scope),
            path="inflation" if isinstance(activity, Inactive) else "update",
            contests_total=loaded.found,
            contests_with_player=len(with_player),
            samples_count=len(player_samples),
            rating_before=before.rating,
            rating_after=after.rating,
            rd_before=before.rd,
            rd_after=after.rd,
            opponent_rd_stats=opponent_rd_stats,
            internals=(
                self._engine.explain(before, player_samples) if player_samples else None
            ),
        )
