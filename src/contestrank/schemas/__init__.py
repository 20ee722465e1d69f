# src/contestrank/schemas/__init__.py

"""Pydantic schemas for API validation and serialization."""

from .common import RatingInfo
from .ratings import (
    BackfillSummaryRead,
    LeaderboardEntry,
    PeriodSummaryRead,
    PlayerPeriodExplainRead,
    PlayerRatingRead,
    RatingHistoryPointRead,
    SchedulerStatusRead,
    UpdateInternalsRead,
)

__all__ = [
    # Common
    "RatingInfo",
    # Ratings
    "BackfillSummaryRead",
    "LeaderboardEntry",
    "PeriodSummaryRead",
    "PlayerPeriodExplainRead",
    "PlayerRatingRead",
    "RatingHistoryPointRead",
    "SchedulerStatusRead",
    "UpdateInternalsRead",
]
