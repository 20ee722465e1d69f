# src/contestrank/rating/periods.py

"""Calendar-month rating periods.

A period is one UTC calendar month, identified as "YYYY-MM" and bounded by
[start, end) where both boundaries are "YYYY-MM-01T00:00:00Z".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

from contestrank.exceptions import InvalidPeriodError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")
_TIMESTAMP_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})")


@dataclass(frozen=True, order=True)
class RatingPeriod:
    """One calendar month. Ordering is chronological."""

    year: int
    month: int

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> datetime:
        return datetime(self.year, self.month, 1, tzinfo=timezone.utc)

    @property
    def end(self) -> datetime:
        return self.next().start

    @property
    def start_iso(self) -> str:
        return _iso(self.start)

    @property
    def end_iso(self) -> str:
        return _iso(self.end)

    def next(self) -> RatingPeriod:
        if self.month == 12:
            return RatingPeriod(self.year + 1, 1)
        return RatingPeriod(self.year, self.month + 1)

    def previous(self) -> RatingPeriod:
        if self.month == 1:
            return RatingPeriod(self.year - 1, 12)
        return RatingPeriod(self.year, self.month - 1)

    def __str__(self) -> str:
        return self.key


def _iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_period(period: str) -> RatingPeriod:
    """Parses a "YYYY-MM" identifier.

    Raises:
        InvalidPeriodError: If the string is malformed or out of range.
    """
    match = _PERIOD_RE.match(period.strip()) if isinstance(period, str) else None
    if match is None:
        raise InvalidPeriodError(str(period), "expected format YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise InvalidPeriodError(period, "month must be within 01..12")
    # The period's end must still be representable as a datetime.
    if year < 1 or (year, month) >= (9999, 12):
        raise InvalidPeriodError(period, "year out of range")
    return RatingPeriod(year, month)


def period_containing(timestamp: str | datetime) -> RatingPeriod:
    """Returns the period a timestamp (datetime or ISO-8601 string) falls in."""
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc)
        return RatingPeriod(timestamp.year, timestamp.month)
    match = _TIMESTAMP_PREFIX_RE.match(timestamp.strip())
    if match is None:
        raise InvalidPeriodError(timestamp, "not an ISO-8601 timestamp")
    return parse_period(f"{match.group(1)}-{match.group(2)}")


def current_period(now: datetime | None = None) -> RatingPeriod:
    """The period containing `now` (defaults to the current UTC time)."""
    return period_containing(now or datetime.now(timezone.utc))


def previous_period(now: datetime | None = None) -> RatingPeriod:
    """The last fully closed period: the month before `now`."""
    return current_period(now).previous()


def resolve_period(period: str | None, now: datetime | None = None) -> RatingPeriod:
    """Parses `period`, defaulting to the previous calendar month."""
    if period is None:
        return previous_period(now)
    return parse_period(period)


def iter_periods(first: RatingPeriod, last: RatingPeriod) -> Iterator[RatingPeriod]:
    """Yields every period from `first` through `last`, in chronological order."""
    period = first
    while period <= last:
        yield period
        period = period.next()


def months_between(earlier: str | datetime, later: str | datetime) -> int:
    """Whole calendar months from `earlier` to `later` (may be zero or negative)."""
    a = period_containing(earlier)
    b = period_containing(later)
    return (b.year - a.year) * 12 + (b.month - a.month)
