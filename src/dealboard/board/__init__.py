"""Stage board module -- optimistic drag-and-drop deal stage management.

Provides the stage registry, the copy-on-write board state, the drag session
state machine, the StageStore persistence adapter (with a SQLAlchemy
implementation), post-commit hooks, and StageBoard, which ties them together.
"""

from src.dealboard.board.board import BoardConfig, StageBoard
from src.dealboard.board.errors import (
    BoardError,
    DealNotFoundError,
    NoActiveDragError,
    StageCommitError,
)
from src.dealboard.board.registry import StageRegistry
from src.dealboard.board.schemas import Deal, DragResult, DragStatus, Stage, StageColumn
from src.dealboard.board.store import SQLStageStore, StageStore

__all__ = [
    "BoardConfig",
    "BoardError",
    "Deal",
    "DealNotFoundError",
    "DragResult",
    "DragStatus",
    "NoActiveDragError",
    "SQLStageStore",
    "Stage",
    "StageBoard",
    "StageColumn",
    "StageCommitError",
    "StageRegistry",
    "StageStore",
]
