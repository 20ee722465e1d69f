# src/contestrank/rating/glicko2_engine.py

"""
Glicko-2 rating periods.
The formulas and steps follow the paper by Dr. Mark Glickman:
https://www.glicko.net/glicko/glicko2.pdf

A player's whole period of evidence (one sample per opponent comparison) is
folded into a single update. Inputs and outputs are on the familiar Glicko
scale (1500 / 350); the math runs on the internal Glicko-2 scale.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from contestrank.exceptions import (
    ComputationError,
    NonFiniteRatingError,
    VolatilityConvergenceError,
)

# Conversion factor between the Glicko and Glicko-2 scales.
GLICKO2_SCALE = 173.7178

# Volatility root search settings.
VOLATILITY_BRACKET = 10.0
VOLATILITY_MAX_ITERATIONS = 30
VOLATILITY_TOLERANCE = 1e-6


# ===============================================
# == Value Types
# ===============================================


@dataclass(frozen=True)
class RatingState:
    """A player's rating in the standard Glicko scale."""

    rating: float = 1500.0
    rd: float = 350.0
    volatility: float = 0.06


@dataclass(frozen=True)
class Glicko2Params:
    """Process-wide Glicko-2 constants."""

    default_rating: float = 1500.0
    default_rd: float = 350.0
    default_vol: float = 0.06
    # The system constant, tau, constrains the change in volatility over time.
    # A typical value is between 0.3 and 1.2.
    tau: float = 0.5

    def default_state(self) -> RatingState:
        """The state every player starts from."""
        return RatingState(
            rating=self.default_rating, rd=self.default_rd, volatility=self.default_vol
        )


@dataclass(frozen=True)
class OpponentSample:
    """One pairwise comparison against one opponent within a period."""

    opp_rating: float
    opp_rd: float
    score: float  # 1.0 win, 0.5 draw, 0.0 loss
    weight: float = 1.0


@dataclass(frozen=True)
class VolatilitySolution:
    """Outcome of the volatility root search.

    Attributes:
        converged: True if the bracket shrank below the tolerance
        x: The root estimate, ln(sigma'^2)
        iterations: Bisection steps taken
        bracket_width: Width of the final bracket
    """

    converged: bool
    x: float
    iterations: int
    bracket_width: float

    @property
    def sigma(self) -> float:
        return math.exp(self.x / 2)


@dataclass(frozen=True)
class PeriodTerms:
    """Per-period sums over a player's opponent samples."""

    v: float
    delta: float
    improvement_sum: float
    expected_sum: float
    score_sum: float
    sample_count: int


@dataclass(frozen=True)
class UpdateExplanation:
    """Glicko-2 internals for one player's period, for diagnostics."""

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


# ===============================================
# == Scale Conversion and Root Search
# ===============================================


def to_glicko2_scale(rating: float, rd: float) -> tuple[float, float]:
    """Converts (rating, rd) to the internal (mu, phi)."""
    return (rating - 1500.0) / GLICKO2_SCALE, rd / GLICKO2_SCALE


def from_glicko2_scale(mu: float, phi: float) -> tuple[float, float]:
    """Converts the internal (mu, phi) back to (rating, rd)."""
    return mu * GLICKO2_SCALE + 1500.0, phi * GLICKO2_SCALE


def solve_volatility(
    delta: float,
    phi: float,
    v: float,
    sigma: float,
    tau: float,
    max_iterations: int = VOLATILITY_MAX_ITERATIONS,
    tolerance: float = VOLATILITY_TOLERANCE,
) -> VolatilitySolution:
    """
    Finds x = ln(sigma'^2) by bisection, starting from [a - 10, a + 10].

    When f does not change sign over that bracket, the end the root lies
    beyond is moved as in step 5.2 of Glickman's paper. The solution is
    marked as not converged only when the bracket is still wider than
    `tolerance` after `max_iterations` halvings.
    """
    a = math.log(sigma**2)
    delta_sq = delta**2
    phi_sq = phi**2
    tau_sq = tau**2

    def f(x: float) -> float:
        ex = math.exp(x)
        return (
            ex * (delta_sq - phi_sq - v - ex) / (2 * (phi_sq + v + ex) ** 2)
            - (x - a) / tau_sq
        )

    low = a - VOLATILITY_BRACKET
    high = a + VOLATILITY_BRACKET
    f_low = f(low)
    f_high = f(high)

    if f_low == 0:
        return VolatilitySolution(True, low, 0, 0.0)
    if f_high == 0:
        return VolatilitySolution(True, high, 0, 0.0)
    if f_low * f_high > 0:
        # The root lies outside the starting bracket: move the end it is past
        # (step 5.2 of the paper). f falls from +inf to -inf, so both loops end.
        if f_high > 0:
            # f(ln(delta^2 - phi^2 - v)) = -(x - a) / tau^2 < 0 past the old end.
            low, f_low = high, f_high
            excess = delta_sq - phi_sq - v
            high = math.log(excess) if excess > 0 else low
            k = 1
            while f(high) > 0:
                high = low + k * tau
                k += 1
        else:
            high = low
            k = 1
            while f(low - k * tau) < 0:
                k += 1
            low = low - k * tau
            f_low = f(low)

    for iteration in range(1, max_iterations + 1):
        mid = (low + high) / 2
        f_mid = f(mid)
        if f_mid == 0:
            return VolatilitySolution(True, mid, iteration, 0.0)
        if f_mid * f_low < 0:
            high = mid
        else:
            low = mid
            f_low = f_mid
        if high - low < tolerance:
            return VolatilitySolution(True, (low + high) / 2, iteration, high - low)

    return VolatilitySolution(False, (low + high) / 2, max_iterations, high - low)


def _require_finite(quantity: str, value: float) -> float:
    if not math.isfinite(value):
        raise NonFiniteRatingError(quantity, value)
    return value


# ===============================================
# == Glicko-2 Core Implementation
# ===============================================


class Glicko2Engine:
    """Encapsulates the Glicko-2 calculation logic."""

    def __init__(self, params: Glicko2Params | None = None):
        self.params = params or Glicko2Params()

    def update_period(
        self, state: RatingState, samples: Sequence[OpponentSample]
    ) -> RatingState:
        """
        Calculates a player's new rating from one period of opponent samples.

        Must be called with at least one sample; players without evidence
        go through inactivity inflation instead.

        Raises:
            ComputationError: If no sample carries weight.
            VolatilityConvergenceError: If the volatility search fails.
            NonFiniteRatingError: If any quantity becomes NaN or infinite.
        """
        # Step 1: Convert to Glicko-2 scale
        mu, phi = to_glicko2_scale(state.rating, state.rd)

        # Steps 2-5: g, E, the estimated variance v and improvement delta
        terms = self._period_terms(mu, samples)

        # Step 6: Determine the new volatility
        solution = solve_volatility(
            terms.delta, phi, terms.v, state.volatility, self.params.tau
        )
        if not solution.converged:
            raise VolatilityConvergenceError(
                solution.iterations, solution.bracket_width
            )
        sigma_prime = _require_finite("volatility", solution.sigma)

        # Step 7: Update the rating deviation and the rating
        phi_star = math.sqrt(phi**2 + sigma_prime**2)
        phi_prime = 1 / math.sqrt(1 / phi_star**2 + 1 / terms.v)
        mu_prime = mu + phi_prime**2 * terms.improvement_sum

        # Step 8: Convert back to the original Glicko scale
        rating, rd = from_glicko2_scale(mu_prime, phi_prime)
        _require_finite("rating", rating)
        _require_finite("rd", rd)

        return RatingState(
            rating=rating,
            rd=min(rd, self.params.default_rd),
            volatility=sigma_prime,
        )

    def explain(
        self, state: RatingState, samples: Sequence[OpponentSample]
    ) -> UpdateExplanation:
        """Returns the intermediate quantities of an update, without applying it."""
        mu, phi = to_glicko2_scale(state.rating, state.rd)
        terms = self._period_terms(mu, samples)
        solution = solve_volatility(
            terms.delta, phi, terms.v, state.volatility, self.params.tau
        )
        phi_star = math.sqrt(phi**2 + solution.sigma**2)
        return UpdateExplanation(
            expected_score_sum=terms.expected_sum,
            actual_score_sum=terms.score_sum,
            expected_score_avg=terms.expected_sum / terms.sample_count,
            actual_score_avg=terms.score_sum / terms.sample_count,
            v=terms.v,
            delta=terms.delta,
            sigma_before=state.volatility,
            sigma_after=solution.sigma,
            phi_before=phi,
            phi_star=phi_star,
            solver_iterations=solution.iterations,
        )

    def _g(self, phi: float) -> float:
        """The g() function from the Glickman paper."""
        return 1 / math.sqrt(1 + 3 * phi**2 / math.pi**2)

    def _E(self, mu: float, mu_j: float, phi_j: float) -> float:
        """The E() function, expected outcome against one opponent."""
        z = self._g(phi_j) * (mu - mu_j)
        if z >= 0:
            return 1 / (1 + math.exp(-z))
        # Same logistic, arranged so exp() cannot overflow.
        ez = math.exp(z)
        return ez / (1 + ez)

    def _period_terms(
        self, mu: float, samples: Sequence[OpponentSample]
    ) -> PeriodTerms:
        """Sums v^-1 and the weighted improvement over the period's samples."""
        v_inv = 0.0
        improvement = 0.0
        expected_sum = 0.0
        score_sum = 0.0
        count = 0
        for sample in samples:
            if sample.weight <= 0:
                continue
            mu_j, phi_j = to_glicko2_scale(sample.opp_rating, sample.opp_rd)
            g_phi_j = self._g(phi_j)
            E = self._E(mu, mu_j, phi_j)
            v_inv += sample.weight * g_phi_j**2 * E * (1 - E)
            improvement += sample.weight * g_phi_j * (sample.score - E)
            expected_sum += E
            score_sum += sample.score
            count += 1

        if count == 0:
            raise ComputationError(
                "update_period requires at least one weighted opponent sample"
            )
        if not v_inv > 0:
            raise ComputationError(
                "Opponent samples carry no information (estimated variance is "
                "unbounded)"
            )

        v = _require_finite("variance", 1 / v_inv)
        delta = _require_finite("delta", v * improvement)
        return PeriodTerms(
            v=v,
            delta=delta,
            improvement_sum=improvement,
            expected_sum=expected_sum,
            score_sum=score_sum,
            sample_count=count,
        )
