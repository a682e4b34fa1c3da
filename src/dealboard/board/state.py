"""Board state holder -- the board's copy-on-write working copy of deals.

The working copy is a tuple of immutable Deal values. Every mutation builds a
new tuple and swaps it in with a single assignment, so a reader (a render, an
API response, a commit task resuming after an await) always sees a complete
snapshot and never a half-applied change.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

import structlog

from src.dealboard.board.registry import StageRegistry
from src.dealboard.board.schemas import Deal

logger = structlog.get_logger(__name__)


class BoardState:
    """Working view of deals grouped by stage.

    Args:
        registry: Stage registry used to validate stages and pick the fallback.
        stage_field: Record key holding the stage for raw records.
    """

    def __init__(self, registry: StageRegistry, stage_field: str = "stage") -> None:
        self._registry = registry
        self._stage_field = stage_field
        self._deals: tuple[Deal, ...] = ()

    @property
    def snapshot(self) -> tuple[Deal, ...]:
        """Current working copy. Safe to hold: it is never mutated."""
        return self._deals

    def normalize(self, items: Iterable[Deal | Mapping[str, Any]]) -> tuple[Deal, ...]:
        """Normalize records into Deals, moving unknown stages to the fallback."""
        deals = []
        for item in items:
            deal = Deal.from_record(item, self._stage_field)
            stage = self._registry.normalize(deal.stage)
            if stage != deal.stage:
                deal = deal.with_stage(stage)
            deals.append(deal)
        return tuple(deals)

    def initialize(self, items: Iterable[Deal | Mapping[str, Any]]) -> None:
        """Replace the working copy with a normalized copy of ``items``."""
        self._deals = self.normalize(items)

    def revert_to(self, items: Iterable[Deal | Mapping[str, Any]]) -> None:
        """Discard the working copy and reload it from ``items`` (rollback)."""
        self._deals = self.normalize(items)

    def get(self, deal_id: str) -> Deal | None:
        for deal in self._deals:
            if deal.id == deal_id:
                return deal
        return None

    def items_in_stage(self, stage_id: str) -> list[Deal]:
        """Deals in a stage, in insertion order."""
        return [d for d in self._deals if d.stage == stage_id]

    def count(self, stage_id: str) -> int:
        return sum(1 for d in self._deals if d.stage == stage_id)

    def aggregate_value(self, stage_id: str) -> Decimal:
        """Sum of deal values in a stage; missing values count as zero."""
        return sum(
            (d.value for d in self._deals if d.stage == stage_id and d.value is not None),
            Decimal(0),
        )

    def replace(self, deal: Deal) -> bool:
        """Swap in a newer version of a deal already in the working copy."""
        current = self._deals
        for idx, existing in enumerate(current):
            if existing.id == deal.id:
                self._deals = current[:idx] + (deal,) + current[idx + 1:]
                return True
        return False

    def reassign(self, deal_id: str, stage_id: str) -> bool:
        """Move a deal to another stage in the working copy only.

        Unknown stages and unknown deals are ignored. Returns True if the
        working copy changed.
        """
        if not self._registry.contains(stage_id):
            logger.debug("board_state.reassign_unknown_stage", deal_id=deal_id, stage=stage_id)
            return False

        current = self._deals
        for idx, deal in enumerate(current):
            if deal.id != deal_id:
                continue
            if deal.stage == stage_id:
                return False
            self._deals = current[:idx] + (deal.with_stage(stage_id),) + current[idx + 1:]
            return True

        logger.debug("board_state.reassign_unknown_deal", deal_id=deal_id, stage=stage_id)
        return False
