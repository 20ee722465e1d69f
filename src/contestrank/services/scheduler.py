# src/contestrank/services/scheduler.py

"""Background task that closes the previous month's rating period."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contestrank.config import Settings
from contestrank.exceptions import ContestRankError
from contestrank.rating.records import GLOBAL_SCOPE
from contestrank.repositories.contests import SqlContestRepository
from contestrank.repositories.ratings import RatingRepository
from contestrank.services.rating_service import PeriodSummary, RatingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerStatus:
    running: bool
    last_run: datetime | None
    next_scheduled_run: datetime


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class RatingsScheduler:
    """
    Runs `recompute_period` for the global scope once a month.

    The loop wakes every `check_interval_seconds`; the run happens on the
    first check at or after `run_hour` UTC on `run_day` of a month that has
    not been run yet.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._schedule = settings.scheduler
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: asyncio.Task | None = None
        self.last_run: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def should_run(self, now: datetime, last_run: datetime | None) -> bool:
        now = _utc(now)
        if now.day != self._schedule.run_day or now.hour < self._schedule.run_hour:
            return False
        if last_run is None:
            return True
        last_run = _utc(last_run)
        return (last_run.year, last_run.month) != (now.year, now.month)

    def next_run_time(self, now: datetime) -> datetime:
        """The next scheduled run strictly after `now`."""
        now = _utc(now)
        candidate = now.replace(
            day=self._schedule.run_day,
            hour=self._schedule.run_hour,
            minute=0,
            second=0,
            microsecond=0,
        )
        if candidate > now:
            return candidate
        if candidate.month == 12:
            return candidate.replace(year=candidate.year + 1, month=1)
        return candidate.replace(month=candidate.month + 1)

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.running,
            last_run=self.last_run,
            next_scheduled_run=self.next_run_time(self._clock()),
        )

    def start(self) -> None:
        if self.running:
            logger.warning("Ratings scheduler is already running")
            return
        logger.info(
            "Starting ratings scheduler",
            extra={
                "run_day": self._schedule.run_day,
                "run_hour": self._schedule.run_hour,
            },
        )
        self._task = asyncio.create_task(self._loop(), name="ratings-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Ratings scheduler stopped")

    async def _loop(self) -> None:
        while True:
            if self.should_run(self._clock(), self.last_run):
                try:
                    await self.run_once()
                except ContestRankError as e:
                    # Retried on the next check.
                    logger.error(
                        "Monthly rating recalculation failed: %s",
                        e.message,
                        extra=e.details,
                        exc_info=True,
                    )
                except Exception as e:
                    # CancelledError is not an Exception and still stops the loop.
                    logger.error(
                        "Unexpected error in monthly rating recalculation: %s",
                        e,
                        exc_info=True,
                    )
            await asyncio.sleep(self._schedule.check_interval_seconds)

    async def run_once(self) -> PeriodSummary:
        """Closes the previous month in the global scope."""
        async with self._session_factory() as session:
            service = RatingService(
                RatingRepository(session),
                SqlContestRepository(session),
                self._settings.glicko2,
                clock=self._clock,
            )
            summary = await service.recompute_period(None, GLOBAL_SCOPE)
        self.last_run = self._clock()
        logger.info(
            "Monthly rating recalculation completed",
            extra={"period": summary.period, "players": summary.players_updated},
        )
        return summary
