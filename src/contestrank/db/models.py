# src/contestrank/db/models.py

"""Database models for contestrank."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List

from sqlalchemy import (
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    Mapped,
    declarative_base,
    mapped_column,
    relationship,
)

Base = declarative_base()

# Scope identifiers as persisted: the global scope has an empty scope_id.
SCOPE_TYPE_GLOBAL = "global"
SCOPE_TYPE_GAME = "game"


# ===============================================
# Mixins for Common Columns
# ===============================================


class TimestampMixin:
    """Mixin providing created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        default=None,
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=True,
    )


class GlickoStateMixin:
    """Mixin providing the three Glicko-2 state columns."""

    rating: Mapped[float] = mapped_column(nullable=False)
    rd: Mapped[float] = mapped_column(nullable=False)
    volatility: Mapped[float] = mapped_column(nullable=False)


# ===============================================
# Contest Data (read-only to the rating engine)
# ===============================================


class Contest(Base):
    """A single contest: a game played by several players at one time."""

    __tablename__ = "contests"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Opaque game identifier; per-game rating scopes key on it.
    game_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # Naive UTC: when the contest started.
    start: Mapped[datetime] = mapped_column(nullable=False, index=True)

    results: Mapped[List["ContestResult"]] = relationship(
        back_populates="contest", cascade="all, delete-orphan"
    )

    def __init__(self, **kw: Any):
        super().__init__(**kw)


class ContestResult(Base):
    """Links a player to a contest with their final place."""

    __tablename__ = "contest_results"
    id: Mapped[int] = mapped_column(primary_key=True)
    contest_id: Mapped[str] = mapped_column(
        ForeignKey("contests.id"), nullable=False, index=True
    )
    player_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    # 1 is first; None means the player took part but was not placed.
    place: Mapped[int | None] = mapped_column(nullable=True)

    contest: Mapped["Contest"] = relationship(back_populates="results")


# ===============================================
# Rating Stores
# ===============================================


class RatingLatest(Base, GlickoStateMixin, TimestampMixin):
    """A player's current rating in one scope, overwritten every period."""

    __tablename__ = "rating_latest"
    id: Mapped[int] = mapped_column(primary_key=True)
    player_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    scope_type: Mapped[str] = mapped_column(String, nullable=False)
    scope_id: Mapped[str] = mapped_column(String, nullable=False, default="")

    # Cumulative contests rated in this scope
    games_played: Mapped[int] = mapped_column(default=0, nullable=False)
    # "YYYY-MM-01T00:00:00Z" of the last period that touched this record
    last_period_end: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "player_id", "scope_type", "scope_id", name="_rating_latest_player_scope_uc"
        ),
        Index("ix_rating_latest_scope_rating", "scope_type", "scope_id", "rating"),
    )

    def __init__(self, **kw: Any):
        super().__init__(**kw)


class RatingHistory(Base, GlickoStateMixin):
    """Append-only snapshot of a player's rating at a period's close."""

    __tablename__ = "rating_history"
    id: Mapped[int] = mapped_column(primary_key=True)
    player_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    scope_type: Mapped[str] = mapped_column(String, nullable=False)
    scope_id: Mapped[str] = mapped_column(String, nullable=False, default="")
    period_end: Mapped[str] = mapped_column(String(20), nullable=False)

    period_games: Mapped[int] = mapped_column(default=0, nullable=False)
    wins: Mapped[int] = mapped_column(default=0, nullable=False)
    losses: Mapped[int] = mapped_column(default=0, nullable=False)
    draws: Mapped[int] = mapped_column(default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "player_id",
            "scope_type",
            "scope_id",
            "period_end",
            name="_rating_history_player_scope_period_uc",
        ),
        Index("ix_rating_history_scope_period", "scope_type", "scope_id", "period_end"),
    )

    def __init__(self, **kw: Any):
        super().__init__(**kw)
