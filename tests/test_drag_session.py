"""Tests for the DragSession state machine."""

from __future__ import annotations

import pytest

from src.dealboard.board import NoActiveDragError
from src.dealboard.board.session import ActiveDrag, DragPhase, DragSession


def test_starts_idle():
    session = DragSession()
    assert session.phase == DragPhase.IDLE
    assert session.active is None
    assert not session.is_dragging


def test_start_over_end():
    session = DragSession()
    started = session.start("d1", "new_deal")
    assert started == ActiveDrag(deal_id="d1", origin_stage="new_deal")
    assert session.phase == DragPhase.DRAGGING

    session.over("proposal")
    session.over("closed_won")
    assert session.active.provisional_stage == "closed_won"
    assert session.active.origin_stage == "new_deal"

    finished = session.end()
    assert finished.provisional_stage == "closed_won"
    assert session.phase == DragPhase.IDLE


def test_only_one_drag_at_a_time():
    session = DragSession()
    session.start("d1", "new_deal")
    with pytest.raises(RuntimeError, match="d1"):
        session.start("d2", "proposal")


def test_events_while_idle():
    session = DragSession()
    with pytest.raises(NoActiveDragError):
        session.over("proposal")
    with pytest.raises(NoActiveDragError):
        session.end()
    assert session.cancel() is None


def test_cancel_returns_session():
    session = DragSession()
    session.start("d1", "new_deal")
    session.over("proposal")
    cancelled = session.cancel()
    assert cancelled.deal_id == "d1"
    assert cancelled.provisional_stage == "proposal"
    assert session.phase == DragPhase.IDLE


def test_reset():
    session = DragSession()
    session.start("d1", "new_deal")
    session.reset()
    assert session.active is None
