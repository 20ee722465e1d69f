# src/contestrank/rating/samples.py

"""Turns contest placements into pairwise opponent samples for one period."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from contestrank.rating.glicko2_engine import Glicko2Params, OpponentSample, RatingState

logger = logging.getLogger(__name__)

# Every pairwise comparison counts the same, whatever the contest size.
PAIRWISE_WEIGHT = 1.0

# (player_id, place); place is None for an unplaced participant.
ContestResult = tuple[str, int | None]


@dataclass
class PlayerPeriodStats:
    """A player's contest tallies for one period."""

    games_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0


@dataclass
class PeriodSamples:
    """Everything the sample builder learned from one period's contests."""

    samples: dict[str, list[OpponentSample]] = field(default_factory=dict)
    stats: dict[str, PlayerPeriodStats] = field(default_factory=dict)
    contests_used: int = 0
    contests_discarded: int = 0

    def samples_for(self, player_id: str) -> list[OpponentSample]:
        return self.samples.get(player_id, [])

    def stats_for(self, player_id: str) -> PlayerPeriodStats:
        return self.stats.get(player_id, PlayerPeriodStats())

    @property
    def participants(self) -> set[str]:
        return set(self.stats)


def score_placement(place: int, opponent_place: int) -> float:
    """1.0 for finishing ahead of the opponent, 0.0 behind, 0.5 tied."""
    if place < opponent_place:
        return 1.0
    if place > opponent_place:
        return 0.0
    return 0.5


def placed_participants(results: Sequence[ContestResult]) -> dict[str, int]:
    """
    Maps each placed participant to their place.

    Unplaced participants are dropped. A player listed more than once keeps
    their best place.
    """
    placements: dict[str, int] = {}
    for player_id, place in results:
        if place is None:
            continue
        best = placements.get(player_id)
        if best is None or place < best:
            placements[player_id] = place
    return placements


def build_period_samples(
    contest_results: Iterable[Sequence[ContestResult]],
    baseline: Mapping[str, RatingState],
    params: Glicko2Params,
) -> PeriodSamples:
    """
    Builds every player's opponent samples for one period.

    Each contest with at least two placed participants yields one sample per
    ordered pair of distinct placed participants. Opponent rating and RD are
    read from `baseline`, the pre-period snapshot, so every sample of the
    period references the same state regardless of processing order.
    Players absent from the baseline are treated as new (default state).
    """
    period = PeriodSamples()
    samples: defaultdict[str, list[OpponentSample]] = defaultdict(list)
    default_state = params.default_state()

    for results in contest_results:
        placements = placed_participants(results)
        if len(placements) < 2:
            period.contests_discarded += 1
            continue
        period.contests_used += 1

        for player_id, place in placements.items():
            stats = period.stats.setdefault(player_id, PlayerPeriodStats())
            stats.games_played += 1
            if place == 1:
                stats.wins += 1
            else:
                stats.losses += 1

            for opponent_id, opponent_place in placements.items():
                if opponent_id == player_id:
                    continue
                opponent = baseline.get(opponent_id, default_state)
                samples[player_id].append(
                    OpponentSample(
                        opp_rating=opponent.rating,
                        opp_rd=opponent.rd,
                        score=score_placement(place, opponent_place),
                        weight=PAIRWISE_WEIGHT,
                    )
                )

    period.samples = dict(samples)
    logger.debug(
        "Built period samples",
        extra={
            "contests_used": period.contests_used,
            "contests_discarded": period.contests_discarded,
            "players": len(period.stats),
        },
    )
    return period
