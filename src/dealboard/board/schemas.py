"""Pydantic schemas for the stage board -- stages, deals, columns, drag results.

Defines all structured types flowing through the board:
- Stage: one column of a pipeline (id, label, color hint, position, group)
- Deal: immutable working-copy item, normalized from raw deal records
- StageColumn: rendered column with its deals and aggregate value
- StageChange: committed stage move handed to post-commit side effects
- DragStatus / DragResult: outcome of finishing a drag gesture
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def coerce_value(raw: Any) -> Decimal | None:
    """Parse a monetary value leniently; anything non-numeric becomes None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else None
    if isinstance(raw, float):
        if not math.isfinite(raw):
            return None
        return Decimal(str(raw))
    if isinstance(raw, (int, str)):
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation:
            return None
        return value if value.is_finite() else None
    return None


# ── Stage ───────────────────────────────────────────────────────────────────


class Stage(BaseModel):
    """A named pipeline column. Fixed at configuration time."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    color: str = ""
    position: int = 0
    group: str = "sales"
    requires_confirmation: bool = False


# ── Deal ────────────────────────────────────────────────────────────────────


class Deal(BaseModel):
    """Draggable work item. Immutable: a stage move produces a new Deal."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    company: str | None = None
    value: Decimal | None = None
    currency: str = "USD"
    stage: str = ""
    owner_id: str | None = None
    updated_at: datetime | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _lenient_value(cls, raw: Any) -> Decimal | None:
        return coerce_value(raw)

    @property
    def display_name(self) -> str:
        """Company name when known, otherwise the customer name."""
        return self.company or self.name

    def with_stage(self, stage_id: str) -> Deal:
        """Return a copy of this deal placed in another stage."""
        return self.model_copy(update={"stage": stage_id})

    @classmethod
    def from_record(cls, record: Deal | Mapping[str, Any], stage_field: str = "stage") -> Deal:
        """Normalize a raw deal record (or an existing Deal) into a Deal.

        Raw records use the store's column names (customer_name, deal_value,
        partner_id, ...). The stage is read from ``stage_field`` so the same
        record feeds boards keyed on different stage columns. Canonical field
        names are accepted too.
        """
        if isinstance(record, Deal):
            return record

        def pick(*keys: str) -> Any:
            for key in keys:
                value = record.get(key)
                if value is not None:
                    return value
            return None

        raw_stage = record.get(stage_field)
        owner = pick("owner_id", "partner_id")
        return cls(
            id=str(record["id"]),
            name=pick("name", "customer_name") or "",
            company=pick("company", "customer_company"),
            value=pick("value", "deal_value"),
            currency=pick("currency") or "USD",
            stage=str(raw_stage) if raw_stage is not None else "",
            owner_id=str(owner) if owner is not None else None,
            updated_at=pick("updated_at"),
        )


# ── Board Views ─────────────────────────────────────────────────────────────


class StageColumn(BaseModel):
    """One rendered column: the stage, its deals in insertion order, and totals."""

    stage: Stage
    deals: list[Deal] = Field(default_factory=list)
    count: int = 0
    total_value: Decimal = Decimal(0)
    currency: str = "USD"


class StageChange(BaseModel):
    """A committed stage move, handed to post-commit side effects."""

    board: str
    deal_id: str
    deal_name: str = ""
    owner_id: str | None = None
    value: Decimal | None = None
    currency: str = "USD"
    from_stage: str
    to_stage: str
    from_label: str
    to_label: str
    changed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


# ── Drag Results ────────────────────────────────────────────────────────────


class DragStatus(str, Enum):
    """How a finished drag gesture resolved."""

    COMMITTED = "committed"
    NO_CHANGE = "no_change"
    NO_TARGET = "no_target"
    IGNORED = "ignored"
    PENDING_CONFIRMATION = "pending_confirmation"
    SUPERSEDED = "superseded"
    FAILED = "failed"


class DragResult(BaseModel):
    """Outcome of drag_end / confirm_pending."""

    status: DragStatus
    deal_id: str | None = None
    stage: str | None = None
    message: str | None = None
    deal: Deal | None = None

    @property
    def failed(self) -> bool:
        return self.status == DragStatus.FAILED
