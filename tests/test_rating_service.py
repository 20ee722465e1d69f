# tests/test_rating_service.py

"""Tests for the period orchestrator: recompute, backfill and explain."""

import asyncio
from datetime import datetime, timezone

import pytest
from conftest import InMemoryContestRepository
from contestrank.exceptions import (
    BackfillInProgressError,
    ContestDataError,
    InvalidPeriodError,
    PersistenceError,
)
from contestrank.rating.glicko2_engine import Glicko2Params
from contestrank.rating.records import GLOBAL_SCOPE, RatingScope
from contestrank.repositories.contests import SqlContestRepository
from contestrank.repositories.ratings import RatingRepository
from contestrank.services.rating_service import RatingService, ScopeLocks
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
JAN_END = "2024-02-01T00:00:00Z"
FEB_END = "2024-03-01T00:00:00Z"
MAR_END = "2024-04-01T00:00:00Z"


def _service(db_session, contests, locks) -> RatingService:
    return RatingService(
        RatingRepository(db_session),
        contests,
        Glicko2Params(),
        locks=locks,
        clock=lambda: NOW,
    )


async def _seed_two_months(add_contest) -> None:
    await add_contest("jan-1", datetime(2024, 1, 10), [("alice", 1), ("bob", 2), ("carol", 3)])
    await add_contest("jan-2", datetime(2024, 1, 20), [("bob", 1), ("carol", 2)])
    await add_contest("feb-1", datetime(2024, 2, 3), [("alice", 1), ("dave", 2)])


def _states(records) -> dict:
    return {pid: record.state for pid, record in records.items()}


# =============================================================================
# Single-period recompute
# =============================================================================


@pytest.mark.asyncio
async def test_recompute_period_rates_participants(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    # 1. ARRANGE
    await _seed_two_months(add_contest)
    service = _service(db_session, SqlContestRepository(db_session), locks)

    # 2. ACT
    summary = await service.recompute_period("2024-01")

    # 3. ASSERT
    assert summary.period == "2024-01"
    assert summary.period_end == JAN_END
    assert summary.contests_found == 2
    assert summary.contests_rated == 2
    assert summary.players_updated == 3
    assert summary.players_inflated == 0

    latest = await RatingRepository(db_session).get_latest_records(GLOBAL_SCOPE)
    assert sorted(latest) == ["alice", "bob", "carol"]
    assert latest["alice"].state.rating > 1500.0 > latest["carol"].state.rating
    assert all(r.state.rd < 350.0 for r in latest.values())
    assert latest["bob"].games_played == 2
    assert all(r.last_period_end == JAN_END for r in latest.values())

    history = await service.get_player_rating_history("bob")
    assert len(history) == 1
    assert (history[0].period_games, history[0].wins, history[0].losses) == (2, 1, 1)


@pytest.mark.asyncio
async def test_head_to_head_moves_symmetrically(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await add_contest("c1", datetime(2024, 1, 10), [("a", 1), ("b", 2)])
    service = _service(db_session, SqlContestRepository(db_session), locks)

    await service.recompute_period("2024-01")

    latest = await RatingRepository(db_session).get_latest_records(GLOBAL_SCOPE)
    a, b = latest["a"].state, latest["b"].state
    assert a.rating - 1500.0 == pytest.approx(1500.0 - b.rating)
    assert a.rd == pytest.approx(b.rd)
    assert a.rd < 300.0


@pytest.mark.asyncio
async def test_recompute_defaults_to_previous_month(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await _seed_two_months(add_contest)
    service = _service(db_session, SqlContestRepository(db_session), locks)

    summary = await service.recompute_period()

    assert summary.period == "2024-02"


@pytest.mark.asyncio
async def test_invalid_period_does_nothing(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await _seed_two_months(add_contest)
    service = _service(db_session, SqlContestRepository(db_session), locks)

    with pytest.raises(InvalidPeriodError):
        await service.recompute_period("2024-13")

    assert await RatingRepository(db_session).get_latest_records(GLOBAL_SCOPE) == {}


@pytest.mark.asyncio
async def test_period_without_contests_inflates_every_known_player(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await add_contest("c1", datetime(2024, 1, 10), [("a", 1), ("b", 2)])
    service = _service(db_session, SqlContestRepository(db_session), locks)
    repo = RatingRepository(db_session)
    await service.recompute_period("2024-01")
    before = await repo.get_latest_records(GLOBAL_SCOPE)

    summary = await service.recompute_period("2024-03")

    assert summary.contests_found == 0
    assert summary.players_updated == 0
    assert summary.players_inflated == 2
    after = await repo.get_latest_records(GLOBAL_SCOPE)
    for pid in ("a", "b"):
        assert after[pid].state.rating == before[pid].state.rating
        assert after[pid].state.volatility == before[pid].state.volatility
        assert after[pid].state.rd > before[pid].state.rd
        assert after[pid].games_played == 1
        assert after[pid].last_period_end == MAR_END

    history = await service.get_player_rating_history("a")
    assert [p.period_end for p in history] == [JAN_END, MAR_END]
    assert history[-1].period_games == 0


@pytest.mark.asyncio
async def test_unplaced_participant_is_inflated_not_updated(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await add_contest("c1", datetime(2024, 1, 10), [("a", 1), ("b", 2), ("ghost", None)])
    service = _service(db_session, SqlContestRepository(db_session), locks)

    summary = await service.recompute_period("2024-01")

    assert summary.players_updated == 2
    assert summary.players_inflated == 1
    ghost = (await RatingRepository(db_session).get_latest_records(GLOBAL_SCOPE))["ghost"]
    assert ghost.state == Glicko2Params().default_state()
    assert ghost.games_played == 0


@pytest.mark.asyncio
async def test_recompute_is_idempotent_for_the_same_snapshot(
    session_factory, add_contest, locks: ScopeLocks
):
    """Same month, same prior snapshot: bit-identical states."""
    await _seed_two_months(add_contest)

    results = []
    for _ in range(2):
        async with session_factory() as session:
            repo = RatingRepository(session)
            await repo.clear_scope(GLOBAL_SCOPE)
            service = _service(session, SqlContestRepository(session), locks)
            await service.recompute_period("2024-01")
            await service.recompute_period("2024-02")
            results.append(_states(await repo.get_latest_records(GLOBAL_SCOPE)))

    assert results[0] == results[1]


# =============================================================================
# Best effort and atomicity
# =============================================================================


@pytest.mark.asyncio
async def test_unreadable_contest_is_skipped(
    db_session: AsyncSession,
    contest_repo: InMemoryContestRepository,
    locks: ScopeLocks,
):
    contest_repo.add("good", datetime(2024, 1, 5), [("a", 1), ("b", 2)])
    contest_repo.add("bad", datetime(2024, 1, 6), [("c", 1), ("d", 2)])
    contest_repo.broken.add("bad")
    service = _service(db_session, contest_repo, locks)

    summary = await service.recompute_period("2024-01")

    assert summary.contests_found == 2
    assert summary.contests_skipped == 1
    assert summary.contests_rated == 1
    latest = await RatingRepository(db_session).get_latest_records(GLOBAL_SCOPE)
    assert sorted(latest) == ["a", "b"]


@pytest.mark.asyncio
async def test_malformed_result_row_is_skipped(
    db_session: AsyncSession,
    contest_repo: InMemoryContestRepository,
    locks: ScopeLocks,
):
    contest_repo.add("good", datetime(2024, 1, 5), [("a", 1), ("b", 2)])
    contest_repo.add("weird", datetime(2024, 1, 6), [("c", "first"), ("d", 2)])
    service = _service(db_session, contest_repo, locks)

    summary = await service.recompute_period("2024-01")

    assert summary.contests_skipped == 1
    assert summary.players_updated == 2


@pytest.mark.asyncio
async def test_contest_listing_failure_aborts_the_period(
    db_session: AsyncSession,
    contest_repo: InMemoryContestRepository,
    locks: ScopeLocks,
):
    contest_repo.add("good", datetime(2024, 1, 5), [("a", 1), ("b", 2)])
    contest_repo.fail_listing = True
    service = _service(db_session, contest_repo, locks)

    with pytest.raises(ContestDataError):
        await service.recompute_period("2024-01")

    assert await RatingRepository(db_session).get_latest_records(GLOBAL_SCOPE) == {}


@pytest.mark.asyncio
async def test_persistence_failure_commits_nothing(
    db_session: AsyncSession,
    contest_repo: InMemoryContestRepository,
    locks: ScopeLocks,
    monkeypatch,
):
    contest_repo.add("c1", datetime(2024, 1, 5), [("a", 1), ("b", 2), ("c", 3)])
    ratings = RatingRepository(db_session)
    service = RatingService(ratings, contest_repo, locks=locks, clock=lambda: NOW)

    async def broken_replace(scope, period_end):
        raise OperationalError("DELETE", {}, Exception("database is locked"))

    monkeypatch.setattr(ratings, "replace_period_history", broken_replace)

    with pytest.raises(PersistenceError):
        await service.recompute_period("2024-01")

    monkeypatch.undo()
    assert await ratings.get_latest_records(GLOBAL_SCOPE) == {}
    assert await ratings.get_player_rating_history("a", GLOBAL_SCOPE, 180) == []


# =============================================================================
# Scopes
# =============================================================================


@pytest.mark.asyncio
async def test_game_scope_only_uses_that_games_contests(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await add_contest("chess-1", datetime(2024, 1, 5), [("a", 1), ("b", 2)], "chess")
    await add_contest("go-1", datetime(2024, 1, 6), [("c", 1), ("d", 2)], "go")
    service = _service(db_session, SqlContestRepository(db_session), locks)
    chess = RatingScope.game("chess")

    summary = await service.recompute_period("2024-01", chess)

    assert summary.scope == "game/chess"
    repo = RatingRepository(db_session)
    assert sorted(await repo.get_latest_records(chess)) == ["a", "b"]
    assert await repo.get_latest_records(GLOBAL_SCOPE) == {}


# =============================================================================
# Backfill
# =============================================================================


@pytest.mark.asyncio
async def test_backfill_matches_sequential_recomputes(
    session_factory, add_contest, locks: ScopeLocks
):
    """Backfill is the same chronological chain as closing months one by one."""
    await _seed_two_months(add_contest)

    async with session_factory() as session:
        service = _service(session, SqlContestRepository(session), locks)
        summary = await service.backfill_all_history()
        backfilled = await RatingRepository(session).get_latest_records(GLOBAL_SCOPE)
        history = await service.get_player_rating_history("alice")

    assert (summary.first_period, summary.last_period) == ("2024-01", "2024-03")
    assert summary.periods_processed == 3
    assert summary.players_rated == 4
    assert [p.period_end for p in history] == [JAN_END, FEB_END, MAR_END]

    async with session_factory() as session:
        repo = RatingRepository(session)
        await repo.clear_scope(GLOBAL_SCOPE)
        service = _service(session, SqlContestRepository(session), locks)
        for period in ("2024-01", "2024-02", "2024-03"):
            await service.recompute_period(period)
        sequential = await repo.get_latest_records(GLOBAL_SCOPE)

    assert _states(backfilled) == _states(sequential)
    assert {pid: r.games_played for pid, r in backfilled.items()} == {
        "alice": 2,
        "bob": 2,
        "carol": 2,
        "dave": 1,
    }


@pytest.mark.asyncio
async def test_backfill_is_repeatable(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await _seed_two_months(add_contest)
    service = _service(db_session, SqlContestRepository(db_session), locks)
    repo = RatingRepository(db_session)

    await service.backfill_all_history()
    first = _states(await repo.get_latest_records(GLOBAL_SCOPE))
    await service.backfill_all_history()
    second = _states(await repo.get_latest_records(GLOBAL_SCOPE))

    assert first == second
    assert len(await service.get_player_rating_history("bob")) == 3


@pytest.mark.asyncio
async def test_backfill_without_contests(
    db_session: AsyncSession, locks: ScopeLocks
):
    service = _service(db_session, SqlContestRepository(db_session), locks)

    summary = await service.backfill_all_history()

    assert summary.periods_processed == 0
    assert summary.first_period is None


@pytest.mark.asyncio
async def test_concurrent_backfill_is_rejected(
    db_session: AsyncSession,
    contest_repo: InMemoryContestRepository,
    locks: ScopeLocks,
):
    service = _service(db_session, contest_repo, locks)
    lock = locks.get(GLOBAL_SCOPE)

    # A period recompute holds the scope; the first backfill queues behind it.
    await lock.acquire()
    first = asyncio.create_task(service.backfill_all_history())
    await asyncio.sleep(0)
    assert not first.done()

    with pytest.raises(BackfillInProgressError):
        await service.backfill_all_history()

    # Other scopes are not blocked.
    summary = await service.backfill_all_history(RatingScope.game("chess"))
    assert summary.periods_processed == 0

    lock.release()
    assert (await first).periods_processed == 0

    # Once finished, the scope can be backfilled again.
    assert (await service.backfill_all_history()).periods_processed == 0


@pytest.mark.asyncio
async def test_backfill_waits_for_running_recompute(
    db_session: AsyncSession,
    contest_repo: InMemoryContestRepository,
    locks: ScopeLocks,
):
    contest_repo.add("c1", datetime(2024, 1, 5), [("a", 1), ("b", 2)])
    service = _service(db_session, contest_repo, locks)
    lock = locks.get(GLOBAL_SCOPE)

    await lock.acquire()
    task = asyncio.create_task(service.backfill_all_history())
    await asyncio.sleep(0)
    assert not task.done()

    lock.release()
    summary = await task
    assert summary.periods_processed == 3
    assert summary.players_rated == 2


@pytest.mark.asyncio
async def test_recompute_waits_for_running_period(
    db_session: AsyncSession,
    contest_repo: InMemoryContestRepository,
    locks: ScopeLocks,
):
    contest_repo.add("c1", datetime(2024, 1, 5), [("a", 1), ("b", 2)])
    service = _service(db_session, contest_repo, locks)
    lock = locks.get(GLOBAL_SCOPE)

    await lock.acquire()
    task = asyncio.create_task(service.recompute_period("2024-01"))
    await asyncio.sleep(0)
    assert not task.done()

    lock.release()
    summary = await task
    assert summary.players_updated == 2


# =============================================================================
# Explain
# =============================================================================


@pytest.mark.asyncio
async def test_explain_player_period_writes_nothing(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await _seed_two_months(add_contest)
    service = _service(db_session, SqlContestRepository(db_session), locks)
    await service.recompute_period("2024-01")
    repo = RatingRepository(db_session)
    alice_jan = (await repo.get_latest_records(GLOBAL_SCOPE))["alice"]

    explanation = await service.explain_player_period("alice", "2024-02")

    assert explanation.path == "update"
    assert explanation.contests_total == 1
    assert explanation.contests_with_player == 1
    assert explanation.samples_count == 1
    assert explanation.rating_before == alice_jan.state.rating
    assert explanation.rating_after > explanation.rating_before
    assert explanation.internals is not None
    assert explanation.internals.actual_score_sum == 1.0
    assert explanation.opponent_rd_stats["max"] == 350.0

    # Nothing was persisted for February.
    after = (await repo.get_latest_records(GLOBAL_SCOPE))["alice"]
    assert after.last_period_end == JAN_END


@pytest.mark.asyncio
async def test_explain_inactive_player(
    db_session: AsyncSession, add_contest, locks: ScopeLocks
):
    await _seed_two_months(add_contest)
    service = _service(db_session, SqlContestRepository(db_session), locks)
    await service.recompute_period("2024-01")

    explanation = await service.explain_player_period("carol", "2024-02")

    assert explanation.path == "inflation"
    assert explanation.samples_count == 0
    assert explanation.internals is None
    assert explanation.rd_after > explanation.rd_before
