# src/contestrank/exceptions.py

"""Custom exception hierarchy for contestrank.

This module provides a structured exception hierarchy that enables:
1. Proper HTTP status code mapping in API endpoints
2. Detailed error context for logging and debugging
3. A clear split between bad input, data access failures and math defects
"""

from __future__ import annotations


class ContestRankError(Exception):
    """Base exception for all contestrank errors.

    Attributes:
        message: Human-readable error description
        details: Optional dict with additional context for logging/debugging
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(ContestRankError):
    """Raised when environment configuration holds unusable values."""

    def __init__(self, name: str, value: object, reason: str) -> None:
        super().__init__(
            message=f"Invalid configuration {name}={value!r}: {reason}",
            details={"setting": name, "value": str(value), "reason": reason},
        )


# =============================================================================
# Validation Errors (HTTP 422)
# =============================================================================


class ValidationError(ContestRankError):
    """Base class for validation errors."""

    pass


class InvalidPeriodError(ValidationError):
    """Raised when a period identifier is not a valid 'YYYY-MM' string."""

    def __init__(self, period: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid period '{period}': {reason}",
            details={"period": period, "reason": reason},
        )


class InvalidScopeError(ValidationError):
    """Raised when a rating scope string cannot be parsed."""

    def __init__(self, scope: str) -> None:
        super().__init__(
            message=f"Invalid rating scope '{scope}', "
            "expected 'global' or 'game/<game_id>'",
            details={"scope": scope},
        )


# =============================================================================
# Data Access Errors (HTTP 500)
# =============================================================================


class DataAccessError(ContestRankError):
    """Base class for repository and persistence failures."""

    pass


class ContestDataError(DataAccessError):
    """Raised when contest data cannot be read or interpreted."""

    def __init__(self, message: str, contest_id: str | None = None) -> None:
        details = {"contest_id": contest_id} if contest_id else {}
        super().__init__(message=message, details=details)


class PersistenceError(DataAccessError):
    """Raised when the rating stores cannot be read or written."""

    def __init__(self, message: str, period_end: str | None = None) -> None:
        details = {"period_end": period_end} if period_end else {}
        super().__init__(message=message, details=details)


# =============================================================================
# Computation Errors (HTTP 500)
# =============================================================================


class ComputationError(ContestRankError):
    """Base class for rating math defects.

    These are never coerced into a default rating.
    """

    def __init__(self, message: str, player_id: str | None = None) -> None:
        details = {"player_id": player_id} if player_id else {}
        super().__init__(message=message, details=details)


class VolatilityConvergenceError(ComputationError):
    """Raised when the volatility root search does not converge."""

    def __init__(self, iterations: int, bracket_width: float) -> None:
        super().__init__(
            message=f"Volatility search did not converge after {iterations} "
            f"iterations (bracket width {bracket_width:.3e})"
        )
        self.details.update(
            {"iterations": iterations, "bracket_width": bracket_width}
        )


class NonFiniteRatingError(ComputationError):
    """Raised when a rating computation yields NaN or infinity."""

    def __init__(self, quantity: str, value: float) -> None:
        super().__init__(message=f"Non-finite {quantity} in rating update: {value}")
        self.details.update({"quantity": quantity, "value": str(value)})


# =============================================================================
# Conflict Errors (HTTP 409)
# =============================================================================


class BackfillInProgressError(ContestRankError):
    """Raised when a full backfill is requested while one is already running."""

    def __init__(self, scope: str) -> None:
        super().__init__(
            message=f"A historical backfill for scope '{scope}' is already running",
            details={"scope": scope},
        )
