# src/contestrank/api/ratings.py

"""API endpoints for rating periods, backfills and rating queries."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from contestrank.config import settings
from contestrank.db.session import get_db
from contestrank.rating.records import RatingScope
from contestrank.repositories.contests import SqlContestRepository
from contestrank.repositories.ratings import RatingRepository
from contestrank.schemas.common import RatingInfo
from contestrank.schemas.ratings import (
    BackfillSummaryRead,
    LeaderboardEntry,
    PeriodSummaryRead,
    PlayerPeriodExplainRead,
    PlayerRatingRead,
    RatingHistoryPointRead,
    SchedulerStatusRead,
)
from contestrank.services.rating_service import DEFAULT_HISTORY_POINTS, RatingService

# - prefix="/ratings": All routes here will be prefixed with /ratings
# - tags=["Ratings"]: Groups these endpoints under "Ratings" in the API docs
router = APIRouter(prefix="/ratings", tags=["Ratings"])

SCOPE_DESCRIPTION = '"global" (default) or "game/<game_id>"'


def get_rating_service(db: AsyncSession = Depends(get_db)) -> RatingService:
    """Builds the rating service over the request's session."""
    return RatingService(
        RatingRepository(db), SqlContestRepository(db), settings.glicko2
    )


@router.post("/recompute", response_model=PeriodSummaryRead)
async def recompute_period(
    period: str | None = Query(None, description="YYYY-MM; defaults to last month"),
    scope: str | None = Query(None, description=SCOPE_DESCRIPTION),
    service: RatingService = Depends(get_rating_service),
) -> PeriodSummaryRead:
    """
    Close one rating period.

    Every player in the scope is either updated from the period's contests
    or has their uncertainty inflated. Re-running a period overwrites it.

    Raises:
        422 Unprocessable Entity: If the period or scope is malformed.
    """
    summary = await service.recompute_period(period, RatingScope.parse(scope))
    return PeriodSummaryRead(**asdict(summary))


@router.post("/backfill", response_model=BackfillSummaryRead)
async def backfill_all_history(
    scope: str | None = Query(None, description=SCOPE_DESCRIPTION),
    service: RatingService = Depends(get_rating_service),
) -> BackfillSummaryRead:
    """
    Rebuild a scope's ratings from the first contest month onwards.

    Raises:
        409 Conflict: If a backfill of the same scope is already running.
    """
    summary = await service.backfill_all_history(RatingScope.parse(scope))
    return BackfillSummaryRead(**asdict(summary))


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
async def get_leaderboard(
    scope: str | None = Query(None, description=SCOPE_DESCRIPTION),
    min_games: int = Query(10, ge=0, description="Minimum rated games"),
    limit: int = Query(50, ge=1, le=500, description="Max entries to return"),
    service: RatingService = Depends(get_rating_service),
) -> list[LeaderboardEntry]:
    """Players ranked by rating within a scope."""
    records = await service.get_leaderboard(RatingScope.parse(scope), min_games, limit)
    return [
        LeaderboardEntry(
            rank=rank,
            player_id=record.player_id,
            rating_info=RatingInfo.from_state(record.state),
            games_played=record.games_played,
        )
        for rank, record in enumerate(records, start=1)
    ]


@router.get("/players/{player_id}", response_model=list[PlayerRatingRead])
async def get_player_ratings(
    player_id: str, service: RatingService = Depends(get_rating_service)
) -> list[PlayerRatingRead]:
    """A player's latest rating in every scope they are rated in."""
    records = await service.get_player_ratings(player_id)
    return [PlayerRatingRead.from_record(record) for record in records]


@router.get(
    "/players/{player_id}/history", response_model=list[RatingHistoryPointRead]
)
async def get_player_rating_history(
    player_id: str,
    scope: str | None = Query(None, description=SCOPE_DESCRIPTION),
    max_points: int = Query(DEFAULT_HISTORY_POINTS, ge=1, le=1000),
    service: RatingService = Depends(get_rating_service),
) -> list[RatingHistoryPointRead]:
    """A player's most recent history points, oldest first."""
    points = await service.get_player_rating_history(
        player_id, RatingScope.parse(scope), max_points
    )
    return [RatingHistoryPointRead.from_point(point) for point in points]


@router.get(
    "/players/{player_id}/explain", response_model=PlayerPeriodExplainRead
)
async def explain_player_period(
    player_id: str,
    period: str = Query(..., description="YYYY-MM"),
    scope: str | None = Query(None, description=SCOPE_DESCRIPTION),
    service: RatingService = Depends(get_rating_service),
) -> PlayerPeriodExplainRead:
    """
    Replay one player's period without writing anything.

    Shows whether the player would be updated or inflated, their samples and
    the Glicko-2 intermediates.
    """
    explanation = await service.explain_player_period(
        player_id, period, RatingScope.parse(scope)
    )
    return PlayerPeriodExplainRead.model_validate(asdict(explanation))


@router.get("/scheduler", response_model=SchedulerStatusRead)
async def get_scheduler_status(request: Request) -> SchedulerStatusRead:
    """Whether the monthly scheduler runs, and when it runs next."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return SchedulerStatusRead(enabled=False, running=False)
    status = scheduler.status()
    return SchedulerStatusRead(
        enabled=True,
        running=status.running,
        last_run=status.last_run,
        next_scheduled_run=status.next_scheduled_run,
    )
