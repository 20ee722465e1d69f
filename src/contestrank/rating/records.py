# src/contestrank/rating/records.py

"""Rating scopes and the records kept in the rating stores."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from contestrank.db.models import SCOPE_TYPE_GAME, SCOPE_TYPE_GLOBAL
from contestrank.exceptions import InvalidScopeError
from contestrank.rating.glicko2_engine import RatingState


@dataclass(frozen=True)
class RatingScope:
    """The context a rating is computed within: global, or one game."""

    scope_type: str = SCOPE_TYPE_GLOBAL
    scope_id: str = ""

    @classmethod
    def global_scope(cls) -> RatingScope:
        return cls(SCOPE_TYPE_GLOBAL, "")

    @classmethod
    def game(cls, game_id: str) -> RatingScope:
        if not game_id:
            raise InvalidScopeError(f"{SCOPE_TYPE_GAME}/")
        return cls(SCOPE_TYPE_GAME, game_id)

    @classmethod
    def parse(cls, value: str | None) -> RatingScope:
        """Parses "global" (or nothing) and "game/<game_id>"."""
        if value is None or value == SCOPE_TYPE_GLOBAL:
            return cls.global_scope()
        prefix = f"{SCOPE_TYPE_GAME}/"
        if value.startswith(prefix) and len(value) > len(prefix):
            return cls.game(value[len(prefix) :])
        raise InvalidScopeError(value)

    @property
    def is_global(self) -> bool:
        return self.scope_type == SCOPE_TYPE_GLOBAL

    @property
    def game_id(self) -> str | None:
        return None if self.is_global else self.scope_id

    def __str__(self) -> str:
        if self.is_global:
            return SCOPE_TYPE_GLOBAL
        return f"{SCOPE_TYPE_GAME}/{self.scope_id}"


GLOBAL_SCOPE = RatingScope.global_scope()


@dataclass(frozen=True)
class LatestRecord:
    """A player's current rating in one scope."""

    player_id: str
    scope: RatingScope
    state: RatingState
    games_played: int
    last_period_end: str
    updated_at: datetime | None = None


@dataclass(frozen=True)
class HistoryPoint:
    """A player's rating at the close of one period."""

    player_id: str
    scope: RatingScope
    period_end: str
    state: RatingState
    period_games: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
