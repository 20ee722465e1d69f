"""Create contest and rating store tables

Revision ID: 20261001_ratings
Revises:
Create Date: 2026-10-01

This migration adds:
- contests / contest_results, the upstream contest data
- rating_latest, one row per player and scope
- rating_history, one row per player, scope and closed period

Scopes are stored as (scope_type, scope_id); the global scope uses an
empty scope_id so that the unique constraints hold for it too.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261001_ratings"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create contest and rating tables with their indexes."""
    # === CONTESTS ===
    op.create_table(
        "contests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("game_id", sa.String(), nullable=True),
        sa.Column("start", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contests_game_id", "contests", ["game_id"])
    op.create_index("ix_contests_start", "contests", ["start"])

    op.create_table(
        "contest_results",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contest_id", sa.String(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("place", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["contest_id"], ["contests.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_contest_results_contest_id", "contest_results", ["contest_id"]
    )
    op.create_index("ix_contest_results_player_id", "contest_results", ["player_id"])

    # === RATING_LATEST ===
    op.create_table(
        "rating_latest",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("scope_type", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("rd", sa.Float(), nullable=False),
        sa.Column("volatility", sa.Float(), nullable=False),
        sa.Column("games_played", sa.Integer(), nullable=False),
        sa.Column("last_period_end", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "player_id", "scope_type", "scope_id", name="_rating_latest_player_scope_uc"
        ),
    )
    op.create_index("ix_rating_latest_player_id", "rating_latest", ["player_id"])
    op.create_index(
        "ix_rating_latest_scope_rating",
        "rating_latest",
        ["scope_type", "scope_id", "rating"],
    )

    # === RATING_HISTORY ===
    op.create_table(
        "rating_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("scope_type", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("period_end", sa.String(length=20), nullable=False),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("rd", sa.Float(), nullable=False),
        sa.Column("volatility", sa.Float(), nullable=False),
        sa.Column("period_games", sa.Integer(), nullable=False),
        sa.Column("wins", sa.Integer(), nullable=False),
        sa.Column("losses", sa.Integer(), nullable=False),
        sa.Column("draws", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "player_id",
            "scope_type",
            "scope_id",
            "period_end",
            name="_rating_history_player_scope_period_uc",
        ),
    )
    op.create_index("ix_rating_history_player_id", "rating_history", ["player_id"])
    op.create_index(
        "ix_rating_history_scope_period",
        "rating_history",
        ["scope_type", "scope_id", "period_end"],
    )


def downgrade() -> None:
    """Drop rating and contest tables."""
    op.drop_index("ix_rating_history_scope_period", table_name="rating_history")
    op.drop_index("ix_rating_history_player_id", table_name="rating_history")
    op.drop_table("rating_history")

    op.drop_index("ix_rating_latest_scope_rating", table_name="rating_latest")
    op.drop_index("ix_rating_latest_player_id", table_name="rating_latest")
    op.drop_table("rating_latest")

    op.drop_index("ix_contest_results_player_id", table_name="contest_results")
    op.drop_index("ix_contest_results_contest_id", table_name="contest_results")
    op.drop_table("contest_results")

    op.drop_index("ix_contests_start", table_name="contests")
    op.drop_index("ix_contests_game_id", table_name="contests")
    op.drop_table("contests")
