# tests/test_api.py

"""Tests for the ratings API endpoints."""

from datetime import datetime

import pytest
from contestrank.api.ratings import get_rating_service
from contestrank.exceptions import BackfillInProgressError, VolatilityConvergenceError
from contestrank.main import app
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_root_and_health(async_client: AsyncClient):
    response = await async_client.get("/")
    assert response.status_code == 200
    assert "contestrank" in response.json()["message"]

    response = await async_client.get("/health")
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_recompute_then_query(async_client: AsyncClient, add_contest):
    # 1. ARRANGE
    await add_contest("c1", datetime(2024, 1, 10), [("alice", 1), ("bob", 2)])
    await add_contest("c2", datetime(2024, 1, 11), [("alice", 1), ("bob", 2)])

    # 2. ACT
    response = await async_client.post("/ratings/recompute", params={"period": "2024-01"})

    # 3. ASSERT
    assert response.status_code == 200
    summary = response.json()
    assert summary["period"] == "2024-01"
    assert summary["scope"] == "global"
    assert summary["players_updated"] == 2

    response = await async_client.get(
        "/ratings/leaderboard", params={"min_games": 2}
    )
    board = response.json()
    assert [entry["player_id"] for entry in board] == ["alice", "bob"]
    assert board[0]["rank"] == 1
    assert board[0]["rating_info"]["rating"] > 1500.0

    # Default min_games is 10: nobody qualifies yet.
    response = await async_client.get("/ratings/leaderboard")
    assert response.json() == []

    response = await async_client.get("/ratings/players/alice")
    ratings = response.json()
    assert len(ratings) == 1
    assert ratings[0]["games_played"] == 2
    assert ratings[0]["last_period_end"] == "2024-02-01T00:00:00Z"

    response = await async_client.get("/ratings/players/alice/history")
    history = response.json()
    assert [p["period_end"] for p in history] == ["2024-02-01T00:00:00Z"]
    assert history[0]["wins"] == 2


@pytest.mark.asyncio
async def test_explain_endpoint(async_client: AsyncClient, add_contest):
    await add_contest("c1", datetime(2024, 1, 10), [("alice", 1), ("bob", 2)])

    response = await async_client.get(
        "/ratings/players/alice/explain", params={"period": "2024-01"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["path"] == "update"
    assert body["samples_count"] == 1
    assert body["internals"]["actual_score_sum"] == 1.0


@pytest.mark.asyncio
async def test_game_scope_endpoints(async_client: AsyncClient, add_contest):
    await add_contest("c1", datetime(2024, 1, 10), [("a", 1), ("b", 2)], "chess")

    response = await async_client.post(
        "/ratings/recompute", params={"period": "2024-01", "scope": "game/chess"}
    )
    assert response.status_code == 200
    assert response.json()["scope"] == "game/chess"

    response = await async_client.get("/ratings/players/a")
    assert [r["scope"] for r in response.json()] == ["game/chess"]


@pytest.mark.asyncio
async def test_scheduler_status_when_disabled(async_client: AsyncClient):
    response = await async_client.get("/ratings/scheduler")
    assert response.status_code == 200
    assert response.json()["enabled"] is False


# =============================================================================
# Error mapping
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("period", ["2024-13", "January", "2024-1"])
async def test_invalid_period_returns_422(async_client: AsyncClient, period: str):
    response = await async_client.post("/ratings/recompute", params={"period": period})

    assert response.status_code == 422
    assert response.json()["error_type"] == "InvalidPeriodError"


@pytest.mark.asyncio
async def test_invalid_scope_returns_422(async_client: AsyncClient):
    response = await async_client.get("/ratings/leaderboard", params={"scope": "team/7"})

    assert response.status_code == 422
    assert response.json()["error_type"] == "InvalidScopeError"


@pytest.mark.asyncio
async def test_computation_error_returns_500(async_client: AsyncClient):
    class FailingService:
        async def recompute_period(self, period, scope):
            raise VolatilityConvergenceError(30, 1e-3)

    app.dependency_overrides[get_rating_service] = lambda: FailingService()
    try:
        response = await async_client.post("/ratings/recompute")
    finally:
        del app.dependency_overrides[get_rating_service]

    assert response.status_code == 500
    assert response.json() == {
        "detail": "Rating calculation failed",
        "error_type": "VolatilityConvergenceError",
    }


@pytest.mark.asyncio
async def test_backfill_conflict_returns_409(async_client: AsyncClient):
    class BusyService:
        async def backfill_all_history(self, scope):
            raise BackfillInProgressError(str(scope))

    app.dependency_overrides[get_rating_service] = lambda: BusyService()
    try:
        response = await async_client.post("/ratings/backfill")
    finally:
        del app.dependency_overrides[get_rating_service]

    assert response.status_code == 409
    assert response.json()["error_type"] == "BackfillInProgressError"
