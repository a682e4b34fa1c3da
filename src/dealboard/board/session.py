"""Drag session -- transient state of the one deal currently being dragged.

State machine:
    IDLE --start--> DRAGGING --over--> DRAGGING
    DRAGGING --end/cancel--> IDLE

The session only records which deal moves and where it was and is headed;
applying previews to the working copy is the board's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from src.dealboard.board.errors import NoActiveDragError


class DragPhase(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass(frozen=True)
class ActiveDrag:
    """Snapshot of a drag in progress (or just finished)."""

    deal_id: str
    origin_stage: str
    provisional_stage: str | None = None


class DragSession:
    """Single-pointer drag session."""

    def __init__(self) -> None:
        self._active: ActiveDrag | None = None

    @property
    def phase(self) -> DragPhase:
        return DragPhase.IDLE if self._active is None else DragPhase.DRAGGING

    @property
    def active(self) -> ActiveDrag | None:
        return self._active

    @property
    def is_dragging(self) -> bool:
        return self._active is not None

    def start(self, deal_id: str, origin_stage: str) -> ActiveDrag:
        if self._active is not None:
            raise RuntimeError(
                f"Drag already in progress for deal {self._active.deal_id}"
            )
        self._active = ActiveDrag(deal_id=deal_id, origin_stage=origin_stage)
        return self._active

    def over(self, stage_id: str) -> ActiveDrag:
        """Record the provisional target stage."""
        active = self._require_active()
        self._active = ActiveDrag(
            deal_id=active.deal_id,
            origin_stage=active.origin_stage,
            provisional_stage=stage_id,
        )
        return self._active

    def end(self) -> ActiveDrag:
        """Finish the drag; returns the final session state."""
        active = self._require_active()
        self._active = None
        return active

    def cancel(self) -> ActiveDrag | None:
        """Abort the drag if one is active."""
        active, self._active = self._active, None
        return active

    def reset(self) -> None:
        self._active = None

    def _require_active(self) -> ActiveDrag:
        if self._active is None:
            raise NoActiveDragError("No drag in progress")
        return self._active
