"""Stage board exception hierarchy."""

from __future__ import annotations


class BoardError(Exception):
    """Base class for stage board errors."""


class StageCommitError(BoardError):
    """The deal store rejected a stage change.

    Attributes:
        reason: Human-readable reason, shown to the user after rollback.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class DealNotFoundError(StageCommitError):
    """The conditional update affected no rows (missing or out of scope)."""

    def __init__(self, deal_id: str) -> None:
        super().__init__("No deal was updated (not found or not authorized)")
        self.deal_id = deal_id


class NoActiveDragError(BoardError):
    """A drag event arrived while no drag (or no pending move) was active."""
