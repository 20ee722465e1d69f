# src/contestrank/rating/inactivity.py

"""Period activity resolution and inactivity RD inflation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence, Union

from contestrank.rating.glicko2_engine import (
    Glicko2Engine,
    Glicko2Params,
    OpponentSample,
    RatingState,
)
from contestrank.rating.periods import months_between


@dataclass(frozen=True)
class Updated:
    """The player has evidence this period."""

    samples: tuple[OpponentSample, ...]


@dataclass(frozen=True)
class Inactive:
    """The player has no evidence this period."""

    elapsed_periods: int


PeriodActivity = Union[Updated, Inactive]


def inflate(
    state: RatingState, elapsed_periods: int, params: Glicko2Params
) -> RatingState:
    """
    Grows a player's RD for a period without evidence.

    Rating and volatility are untouched; the RD becomes
    min(default_rd, sqrt(rd^2 + volatility^2)). The growth is one unit per
    call whatever `elapsed_periods` is (values below 1 count as 1); a gap of
    several months is absorbed by the inflation applied in each closed
    month, and by the `default_rd` ceiling.

    Open question: the volatility is added on the display scale, so the RD
    barely moves (90 becomes about 90.00002 at volatility 0.06). Glickman's
    step 6 inflates phi on the Glicko-2 scale, which would add roughly
    volatility * 173.7 rating points per month; scaling that by
    `elapsed_periods` is the other candidate. Either one changes stored
    ratings and needs a backfill.
    """
    rd = math.sqrt(state.rd**2 + state.volatility**2)
    return RatingState(
        rating=state.rating,
        rd=min(params.default_rd, rd),
        volatility=state.volatility,
    )


def elapsed_periods_between(
    last_period_end: str | datetime | None, period_end: str | datetime
) -> int:
    """Whole months since the player's last processed period, floored at 1."""
    if last_period_end is None:
        return 1
    return max(1, months_between(last_period_end, period_end))


def resolve_activity(
    samples: Sequence[OpponentSample],
    last_period_end: str | datetime | None,
    period_end: str | datetime,
) -> PeriodActivity:
    """Decides whether a player is updated or inflated this period."""
    if samples:
        return Updated(tuple(samples))
    return Inactive(elapsed_periods_between(last_period_end, period_end))


def apply_activity(
    engine: Glicko2Engine, state: RatingState, activity: PeriodActivity
) -> RatingState:
    """Computes a player's end-of-period state."""
    if isinstance(activity, Updated):
        return engine.update_period(state, activity.samples)
    return inflate(state, activity.elapsed_periods, engine.params)
