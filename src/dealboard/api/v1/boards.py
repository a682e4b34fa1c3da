"""REST API endpoints driving the stage boards.

A UI client forwards its drag-and-drop gestures here (start, over, end,
cancel) and renders the board returned by each call. Boards live on
app.state.boards, keyed by name, and are created at startup.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.dealboard.board import NoActiveDragError, StageBoard

router = APIRouter(prefix="/boards", tags=["boards"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class StageResponse(BaseModel):
    """A stage column definition."""

    id: str
    label: str
    color: str = ""
    position: int = 0
    group: str = "sales"
    requires_confirmation: bool = False


class DealResponse(BaseModel):
    """A deal card, with the value serialized as a float."""

    id: str
    name: str
    company: str | None = None
    value: float | None = None
    currency: str = "USD"
    stage: str
    owner_id: str | None = None
    updated_at: str | None = None


class ColumnResponse(BaseModel):
    """One visible column with its deals and aggregate value."""

    stage: StageResponse
    deals: list[DealResponse] = Field(default_factory=list)
    count: int = 0
    total_value: float = 0.0
    currency: str = "USD"


class MoveResponse(BaseModel):
    """A drag in progress or a move awaiting confirmation."""

    deal_id: str
    origin_stage: str
    provisional_stage: str | None = None


class BoardResponse(BaseModel):
    """Board view: visible columns plus collapsed-group badges."""

    name: str
    columns: list[ColumnResponse] = Field(default_factory=list)
    hidden_counts: dict[str, int] = Field(default_factory=dict)
    collapsed_groups: list[str] = Field(default_factory=list)
    total_value: float = 0.0
    active_drag: MoveResponse | None = None
    pending_move: MoveResponse | None = None


class DragEndResponse(BaseModel):
    """Outcome of finishing (or confirming) a drag, with the board to render."""

    status: str
    deal_id: str | None = None
    stage: str | None = None
    board: BoardResponse


# ── Request Schemas ──────────────────────────────────────────────────────────


class DragStartRequest(BaseModel):
    deal_id: str


class DragTargetRequest(BaseModel):
    """Drop target under the pointer: a stage id, a deal id, or null."""

    target_id: str | None = None


# ── Dependency Injection Helper ──────────────────────────────────────────────


def _get_boards(request: Request) -> dict[str, StageBoard]:
    """Retrieve the board map from app.state, 503 if not available."""
    boards = getattr(request.app.state, "boards", None)
    if boards is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stage boards not initialized",
        )
    return boards


def _get_board(request: Request, board_name: str) -> StageBoard:
    board = _get_boards(request).get(board_name)
    if board is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Board not found: {board_name}",
        )
    return board


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _stage_to_response(stage: Any) -> StageResponse:
    return StageResponse(**stage.model_dump())


def _deal_to_response(deal: Any) -> DealResponse:
    return DealResponse(
        id=deal.id,
        name=deal.name,
        company=deal.company,
        value=float(deal.value) if deal.value is not None else None,
        currency=deal.currency,
        stage=deal.stage,
        owner_id=deal.owner_id,
        updated_at=deal.updated_at.isoformat() if deal.updated_at else None,
    )


def _move_to_response(move: Any) -> MoveResponse | None:
    if move is None:
        return None
    return MoveResponse(
        deal_id=move.deal_id,
        origin_stage=move.origin_stage,
        provisional_stage=move.provisional_stage,
    )


def _board_to_response(board: StageBoard) -> BoardResponse:
    return BoardResponse(
        name=board.name,
        columns=[
            ColumnResponse(
                stage=_stage_to_response(col.stage),
                deals=[_deal_to_response(d) for d in col.deals],
                count=col.count,
                total_value=float(col.total_value),
                currency=col.currency,
            )
            for col in board.columns()
        ],
        hidden_counts=board.hidden_counts(),
        collapsed_groups=sorted(board.collapsed_groups),
        total_value=float(board.totals()),
        active_drag=_move_to_response(board.active_drag),
        pending_move=_move_to_response(board.pending_move),
    )


def _drag_result_to_response(result: Any, board: StageBoard) -> DragEndResponse:
    if result.failed:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    return DragEndResponse(
        status=result.status.value,
        deal_id=result.deal_id,
        stage=result.stage,
        board=_board_to_response(board),
    )


def _no_drag(exc: NoActiveDragError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# ── Board Endpoints ──────────────────────────────────────────────────────────


@router.get("", response_model=list[str])
async def list_boards(request: Request) -> list[str]:
    """List the names of all configured boards."""
    return list(_get_boards(request))


@router.get("/{board_name}", response_model=BoardResponse)
async def get_board(board_name: str, request: Request) -> BoardResponse:
    """Render the board's visible columns."""
    return _board_to_response(_get_board(request, board_name))


@router.get("/{board_name}/stages", response_model=list[StageResponse])
async def list_stages(board_name: str, request: Request) -> list[StageResponse]:
    """All stages of the board in column order, including collapsed ones."""
    board = _get_board(request, board_name)
    return [_stage_to_response(s) for s in board.registry.list_stages()]


@router.post("/{board_name}/refresh", response_model=BoardResponse)
async def refresh_board(board_name: str, request: Request) -> BoardResponse:
    """Reload the board from the deal store."""
    board = _get_board(request, board_name)
    await board.refresh()
    return _board_to_response(board)


# ── Drag Endpoints ───────────────────────────────────────────────────────────


@router.post("/{board_name}/drag/start", response_model=BoardResponse)
async def drag_start(
    board_name: str, body: DragStartRequest, request: Request
) -> BoardResponse:
    """Start dragging a deal. Unknown deals are ignored."""
    board = _get_board(request, board_name)
    board.drag_start(body.deal_id)
    return _board_to_response(board)


@router.post("/{board_name}/drag/over", response_model=BoardResponse)
async def drag_over(
    board_name: str, body: DragTargetRequest, request: Request
) -> BoardResponse:
    """Preview the dragged deal over a column or another deal."""
    board = _get_board(request, board_name)
    try:
        board.drag_over(body.target_id)
    except NoActiveDragError as exc:
        raise _no_drag(exc) from exc
    return _board_to_response(board)


@router.post("/{board_name}/drag/end", response_model=DragEndResponse)
async def drag_end(
    board_name: str, body: DragTargetRequest, request: Request
) -> DragEndResponse:
    """Drop the dragged deal and commit its new stage. 409 if the commit fails."""
    board = _get_board(request, board_name)
    try:
        result = await board.drag_end(body.target_id)
    except NoActiveDragError as exc:
        raise _no_drag(exc) from exc
    return _drag_result_to_response(result, board)


@router.post("/{board_name}/drag/cancel", response_model=BoardResponse)
async def drag_cancel(board_name: str, request: Request) -> BoardResponse:
    """Abort the drag and restore the deal's column."""
    board = _get_board(request, board_name)
    board.drag_cancel()
    return _board_to_response(board)


@router.post("/{board_name}/pending/confirm", response_model=DragEndResponse)
async def confirm_pending(board_name: str, request: Request) -> DragEndResponse:
    """Commit the move that is waiting for confirmation."""
    board = _get_board(request, board_name)
    try:
        result = await board.confirm_pending()
    except NoActiveDragError as exc:
        raise _no_drag(exc) from exc
    return _drag_result_to_response(result, board)


@router.post("/{board_name}/pending/cancel", response_model=BoardResponse)
async def cancel_pending(board_name: str, request: Request) -> BoardResponse:
    """Discard the move that is waiting for confirmation."""
    board = _get_board(request, board_name)
    board.cancel_pending()
    return _board_to_response(board)


# ── Group Endpoints ──────────────────────────────────────────────────────────


@router.post("/{board_name}/groups/{group}/{action}", response_model=BoardResponse)
async def toggle_group(
    board_name: str, group: str, action: str, request: Request
) -> BoardResponse:
    """Expand or collapse a stage group."""
    board = _get_board(request, board_name)
    if action not in ("expand", "collapse"):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown group action: {action}",
        )
    try:
        if action == "expand":
            board.expand(group)
        else:
            board.collapse(group)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown stage group: {group}",
        ) from exc
    return _board_to_response(board)
