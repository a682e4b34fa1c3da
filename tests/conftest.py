"""Shared fixtures for stage board tests.

Provides:
- InMemoryStageStore: StageStore test double with failure injection and a
  gate for holding commits in flight
- Deal record factory and a small sales registry
- make_board: StageBoard factory wired to an in-memory store
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from src.dealboard.board import (
    BoardConfig,
    Deal,
    DealNotFoundError,
    StageBoard,
    StageRegistry,
    StageStore,
)
from src.dealboard.board.registry import SALES_STAGES


# ── In-Memory Test Double ────────────────────────────────────────────────────


class InMemoryStageStore(StageStore):
    """In-memory StageStore for testing without a database."""

    def __init__(self, records: list[dict[str, Any]] | None = None, stage_field: str = "stage") -> None:
        self.records: dict[str, dict[str, Any]] = {
            str(r["id"]): dict(r) for r in (records or [])
        }
        self.stage_field = stage_field
        self.commits: list[tuple[str, str]] = []
        self.activities: list[tuple[str, str]] = []
        self.commit_error: Exception | None = None
        self.audit_error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def commit_stage(self, deal_id: str, stage_id: str) -> Deal:
        self.commits.append((deal_id, stage_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.commit_error is not None:
            raise self.commit_error
        record = self.records.get(deal_id)
        if record is None:
            raise DealNotFoundError(deal_id)
        record[self.stage_field] = stage_id
        record["updated_at"] = datetime.now(timezone.utc)
        return Deal.from_record(record, self.stage_field)

    async def log_stage_change(self, deal_id: str, stage_label: str, subject: str = "Stage") -> None:
        if self.audit_error is not None:
            raise self.audit_error
        self.activities.append((deal_id, f"{subject} updated to {stage_label}"))

    async def load_deals(self) -> list[Deal]:
        return [Deal.from_record(r, self.stage_field) for r in self.records.values()]


# ── Factories ────────────────────────────────────────────────────────────────


def make_record(deal_id: str, stage: str | None = "new_deal", value: Any = 1000, **extra) -> dict[str, Any]:
    """Raw deal record as the deals table returns it."""
    record = {
        "id": deal_id,
        "customer_name": f"Customer {deal_id}",
        "customer_company": f"Company {deal_id}",
        "deal_value": value,
        "currency": "USD",
        "stage": stage,
        "partner_id": f"partner-{deal_id}",
    }
    record.update(extra)
    return record


@pytest.fixture
def deal_record():
    """The make_record factory, for test modules."""
    return make_record


@pytest.fixture
def sales_registry() -> StageRegistry:
    return StageRegistry(SALES_STAGES, "new_deal")


@pytest.fixture
def make_board(sales_registry):
    """Factory: make_board(records, registry=..., **config) -> (board, store)."""

    def _make(
        records: list[dict[str, Any]],
        registry: StageRegistry | None = None,
        stage_field: str = "stage",
        on_update=None,
        on_error=None,
        hooks=(),
        **config_kwargs,
    ) -> tuple[StageBoard, InMemoryStageStore]:
        store = InMemoryStageStore(records, stage_field=stage_field)
        config = BoardConfig(
            name=config_kwargs.pop("name", "test"),
            registry=registry or sales_registry,
            stage_field=stage_field,
            **config_kwargs,
        )
        board = StageBoard(config, store, on_update=on_update, on_error=on_error, hooks=hooks)
        board.initialize(records)
        return board, store

    return _make
