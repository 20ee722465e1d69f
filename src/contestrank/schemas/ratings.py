# src/contestrank/schemas/ratings.py

"""Response schemas for the ratings endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from contestrank.rating.records import HistoryPoint, LatestRecord

from .common import RatingInfo


class PlayerRatingRead(BaseModel):
    """A player's latest rating in one scope."""

    player_id: str
    scope: str = Field(..., description='"global" or "game/<game_id>"')
    rating_info: RatingInfo
    games_played: int = Field(..., ge=0, description="Rated games, all periods")
    last_period_end: str
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: LatestRecord) -> "PlayerRatingRead":
        return cls(
            player_id=record.player_id,
            scope=str(record.scope),
            rating_info=RatingInfo.from_state(record.state),
            games_played=record.games_played,
            last_period_end=record.last_period_end,
            updated_at=record.updated_at,
        )


class LeaderboardEntry(BaseModel):
    """Single entry in a scope leaderboard.

    Attributes:
        rank: Position in leaderboard (1-indexed)
        player_id: The ranked player
        rating_info: Current rating information (rating, rd, vol)
        games_played: Rated games across all periods
    """

    rank: int = Field(..., ge=1, description="Position in leaderboard (1-indexed)")
    player_id: str
    rating_info: RatingInfo
    games_played: int = Field(..., ge=0)


class RatingHistoryPointRead(BaseModel):
    """A player's rating at the close of one period."""

    period_end: str
    rating_info: RatingInfo
    period_games: int
    wins: int
    losses: int
    draws: int

    @classmethod
    def from_point(cls, point: HistoryPoint) -> "RatingHistoryPointRead":
        return cls(
            period_end=point.period_end,
            rating_info=RatingInfo.from_state(point.state),
            period_games=point.period_games,
            wins=point.wins,
            losses=point.losses,
            draws=point.draws,
        )


class PeriodSummaryRead(BaseModel):
    period: str
    scope: str
    period_end: str
    contests_found: int
    contests_rated: int
    contests_skipped: int
    players_updated: int
    players_inflated: int


class BackfillSummaryRead(BaseModel):
    scope: str
    first_period: str | None
    last_period: str | None
    periods_processed: int
    players_rated: int


class UpdateInternalsRead(BaseModel):
    """Glicko-2 intermediates of one update, for debugging."""

    expected_score_sum: float
    actual_score_sum: float
    expected_score_avg: float
    actual_score_avg: float
    v: float
    delta: float
    sigma_before: float
    sigma_after: float
    phi_before: float
    phi_star: float
    solver_iterations: int


class PlayerPeriodExplainRead(BaseModel):
    """What recomputing a period now would do for one player."""

    player_id: str
    period: str
    scope: str
    path: str = Field(..., description='"update" or "inflation"')
    contests_total: int
    contests_with_player: int
    samples_count: int
    rating_before: float
    rating_after: float
    rd_before: float
    rd_after: float
    opponent_rd_stats: dict[str, float] | None = None
    internals: UpdateInternalsRead | None = None


class SchedulerStatusRead(BaseModel):
    enabled: bool
    running: bool
    last_run: datetime | None = None
    next_scheduled_run: datetime | None = None
