# src/contestrank/schemas/common.py

"""Common Pydantic schemas used across multiple resources."""

from pydantic import BaseModel, Field

from contestrank.rating.glicko2_engine import RatingState


class RatingInfo(BaseModel):
    """Pydantic model for a Glicko-2 state on the display scale.

    Attributes:
        rating: The player's skill rating
        rd: Rating deviation / uncertainty
        vol: Volatility / consistency
    """

    rating: float = Field(..., description="Skill rating")
    rd: float = Field(..., gt=0, description="Rating deviation (uncertainty)")
    vol: float = Field(..., gt=0, description="Volatility (consistency)")

    @classmethod
    def from_state(cls, state: RatingState) -> "RatingInfo":
        return cls(rating=state.rating, rd=state.rd, vol=state.volatility)
