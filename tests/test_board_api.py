"""Integration tests for the stage board API endpoints.

Builds a minimal FastAPI app with the boards router and StageBoards backed by
the in-memory store on app.state.boards, and drives them with httpx
AsyncClient over ASGITransport.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.dealboard.api.v1.boards import router
from src.dealboard.board import DealNotFoundError, StageRegistry
from src.dealboard.board.registry import (
    IMPLEMENTATION_GROUP,
    IMPLEMENTATION_STAGES,
    SALES_STAGES,
)


def _make_app() -> FastAPI:
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    return app


@pytest_asyncio.fixture
async def api(make_board, deal_record):
    """Yields (client, boards, stores) for a partner board and an admin board."""
    partner, partner_store = make_board(
        [
            deal_record("d1", stage="new_deal", value=1000),
            deal_record("d2", stage="proposal", value=500),
        ],
        registry=StageRegistry(SALES_STAGES, "new_deal").with_confirmation("closed_won"),
        name="partner",
    )
    admin, admin_store = make_board(
        [deal_record("d1", admin_stage=None), deal_record("d2", admin_stage="uat")],
        registry=StageRegistry(SALES_STAGES + IMPLEMENTATION_STAGES, "urs"),
        stage_field="admin_stage",
        collapsed_groups=frozenset({IMPLEMENTATION_GROUP}),
        name="admin",
    )

    app = _make_app()
    app.state.boards = {"partner": partner, "admin": admin}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, app.state.boards, {"partner": partner_store, "admin": admin_store}

    await partner.aclose()
    await admin.aclose()


def _column(board_json: dict, stage_id: str) -> dict:
    return next(c for c in board_json["columns"] if c["stage"]["id"] == stage_id)


# ── Reads ────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_boards(api):
    client, _, _ = api
    response = await client.get("/api/v1/boards")
    assert response.status_code == 200
    assert response.json() == ["partner", "admin"]


@pytest.mark.asyncio
async def test_get_board(api):
    client, _, _ = api
    response = await client.get("/api/v1/boards/partner")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "partner"
    assert len(data["columns"]) == 6
    assert _column(data, "new_deal")["count"] == 1
    assert _column(data, "proposal")["total_value"] == 500.0
    assert data["total_value"] == 1500.0
    assert data["active_drag"] is None


@pytest.mark.asyncio
async def test_get_admin_board_hides_implementation(api):
    client, _, _ = api
    data = (await client.get("/api/v1/boards/admin")).json()
    assert [c["stage"]["id"] for c in data["columns"]][-1] == "closed_lost"
    assert data["hidden_counts"] == {IMPLEMENTATION_GROUP: 2}
    assert data["collapsed_groups"] == [IMPLEMENTATION_GROUP]


@pytest.mark.asyncio
async def test_list_stages(api):
    client, _, _ = api
    response = await client.get("/api/v1/boards/admin/stages")
    stages = response.json()
    assert len(stages) == 16
    assert stages[6]["id"] == "urs"
    assert stages[6]["group"] == IMPLEMENTATION_GROUP


@pytest.mark.asyncio
async def test_unknown_board_404(api):
    client, _, _ = api
    response = await client.get("/api/v1/boards/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_boards_api_503_when_not_initialized():
    app = _make_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/boards/partner")
    assert response.status_code == 503


# ── Drag Flow ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_drag_and_commit(api):
    client, _, stores = api
    base = "/api/v1/boards/partner"

    started = await client.post(f"{base}/drag/start", json={"deal_id": "d1"})
    assert started.json()["active_drag"]["origin_stage"] == "new_deal"

    over = await client.post(f"{base}/drag/over", json={"target_id": "d2"})
    assert over.json()["active_drag"]["provisional_stage"] == "proposal"
    assert _column(over.json(), "proposal")["count"] == 2

    ended = await client.post(f"{base}/drag/end", json={"target_id": "proposal"})
    assert ended.status_code == 200
    data = ended.json()
    assert data["status"] == "committed"
    assert data["stage"] == "proposal"
    assert data["board"]["active_drag"] is None
    assert stores["partner"].commits == [("d1", "proposal")]


@pytest.mark.asyncio
async def test_drop_without_target(api):
    client, _, stores = api
    base = "/api/v1/boards/partner"
    await client.post(f"{base}/drag/start", json={"deal_id": "d1"})
    await client.post(f"{base}/drag/over", json={"target_id": "negotiation"})

    response = await client.post(f"{base}/drag/end", json={"target_id": None})

    assert response.status_code == 200
    assert response.json()["status"] == "no_target"
    assert _column(response.json()["board"], "new_deal")["count"] == 1
    assert stores["partner"].commits == []


@pytest.mark.asyncio
async def test_failed_commit_returns_409_and_rolls_back(api):
    client, _, stores = api
    stores["partner"].commit_error = DealNotFoundError("d1")
    base = "/api/v1/boards/partner"

    await client.post(f"{base}/drag/start", json={"deal_id": "d1"})
    response = await client.post(f"{base}/drag/end", json={"target_id": "negotiation"})

    assert response.status_code == 409
    assert response.json()["detail"] == (
        "Failed to update deal stage: No deal was updated (not found or not authorized)"
    )
    board = (await client.get(base)).json()
    assert _column(board, "new_deal")["count"] == 1
    assert _column(board, "negotiation")["count"] == 0


@pytest.mark.asyncio
async def test_drag_events_without_start_409(api):
    client, _, _ = api
    base = "/api/v1/boards/partner"
    assert (await client.post(f"{base}/drag/over", json={"target_id": "proposal"})).status_code == 409
    assert (await client.post(f"{base}/drag/end", json={"target_id": "proposal"})).status_code == 409
    assert (await client.post(f"{base}/pending/confirm")).status_code == 409


@pytest.mark.asyncio
async def test_drag_cancel(api):
    client, _, _ = api
    base = "/api/v1/boards/partner"
    await client.post(f"{base}/drag/start", json={"deal_id": "d1"})
    await client.post(f"{base}/drag/over", json={"target_id": "closed_lost"})

    response = await client.post(f"{base}/drag/cancel")

    assert response.json()["active_drag"] is None
    assert _column(response.json(), "closed_lost")["count"] == 0


# ── Confirmation ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_closed_won_requires_confirmation(api):
    client, _, stores = api
    base = "/api/v1/boards/partner"
    await client.post(f"{base}/drag/start", json={"deal_id": "d1"})

    ended = await client.post(f"{base}/drag/end", json={"target_id": "closed_won"})
    assert ended.json()["status"] == "pending_confirmation"
    assert ended.json()["board"]["pending_move"]["provisional_stage"] == "closed_won"
    assert stores["partner"].commits == []

    confirmed = await client.post(f"{base}/pending/confirm")
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "committed"
    assert stores["partner"].commits == [("d1", "closed_won")]


@pytest.mark.asyncio
async def test_pending_cancel(api):
    client, _, stores = api
    base = "/api/v1/boards/partner"
    await client.post(f"{base}/drag/start", json={"deal_id": "d1"})
    await client.post(f"{base}/drag/end", json={"target_id": "closed_won"})

    response = await client.post(f"{base}/pending/cancel")

    assert response.json()["pending_move"] is None
    assert _column(response.json(), "new_deal")["count"] == 1
    assert stores["partner"].commits == []


# ── Groups / Refresh ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_expand_and_collapse_group(api):
    client, _, _ = api
    base = "/api/v1/boards/admin"

    expanded = await client.post(f"{base}/groups/{IMPLEMENTATION_GROUP}/expand")
    assert expanded.status_code == 200
    assert len(expanded.json()["columns"]) == 16
    assert expanded.json()["hidden_counts"] == {}

    collapsed = await client.post(f"{base}/groups/{IMPLEMENTATION_GROUP}/collapse")
    assert len(collapsed.json()["columns"]) == 6


@pytest.mark.asyncio
async def test_unknown_group_or_action_404(api):
    client, _, _ = api
    base = "/api/v1/boards/admin"
    assert (await client.post(f"{base}/groups/marketing/expand")).status_code == 404
    assert (await client.post(f"{base}/groups/{IMPLEMENTATION_GROUP}/toggle")).status_code == 404


@pytest.mark.asyncio
async def test_refresh(api):
    client, _, stores = api
    stores["partner"].records["d1"]["stage"] = "negotiation"

    response = await client.post("/api/v1/boards/partner/refresh")

    assert response.status_code == 200
    assert _column(response.json(), "negotiation")["count"] == 1
