"""Persistence adapter -- the deal store interface the stage board consumes.

StageStore is the abstract contract; SQLStageStore implements it over async
SQLAlchemy with the session_factory callable pattern. The store is opaque to
the board: a commit either returns the committed deal or raises.

Key behaviors:
- commit_stage is a single conditional UPDATE (stage column + updated_at)
  with RETURNING; zero affected rows raises DealNotFoundError even though the
  statement itself succeeded
- An optional scope (e.g. {"partner_id": ...}) narrows every query, so deals
  outside the caller's scope look "not found or not authorized"
- Transient connection errors are retried with tenacity + exponential backoff;
  a zero-row result is a definitive answer and is never retried
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.dealboard.board.errors import DealNotFoundError
from src.dealboard.board.models import DealActivityModel, DealModel
from src.dealboard.board.schemas import Deal

logger = structlog.get_logger(__name__)

STAGE_UPDATED_ACTIVITY = "stage_updated"

_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type((OperationalError, InterfaceError)),
    reraise=True,
)


class StageStore(ABC):
    """Abstract deal store used by a StageBoard.

    Methods:
        commit_stage: Persist a deal's new stage, return the committed deal.
        log_stage_change: Append a best-effort audit entry.
        load_deals: Fetch the board's deal set (initial load / refresh).
    """

    @abstractmethod
    async def commit_stage(self, deal_id: str, stage_id: str) -> Deal:
        """Persist ``stage_id`` for the deal.

        Raises:
            DealNotFoundError: If no record was updated.
        """
        ...

    @abstractmethod
    async def log_stage_change(
        self, deal_id: str, stage_label: str, subject: str = "Stage"
    ) -> None:
        """Record "<subject> updated to <stage_label>" in the deal's activity trail."""
        ...

    @abstractmethod
    async def load_deals(self) -> list[Deal]:
        """Return all deals visible to this board."""
        ...


def _model_to_record(model: DealModel, stage_field: str) -> dict[str, Any]:
    return {
        "id": str(model.id),
        "customer_name": model.customer_name,
        "customer_company": model.customer_company,
        "deal_value": model.deal_value,
        "currency": model.currency,
        "partner_id": model.partner_id,
        "updated_at": model.updated_at,
        stage_field: getattr(model, stage_field),
    }


class SQLStageStore(StageStore):
    """StageStore backed by the ``deals`` / ``deal_activities`` tables.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        stage_field: Column holding this board's stage ("stage", "admin_stage").
        scope: Optional column/value equality filters applied to every query.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        stage_field: str = "stage",
        scope: Mapping[str, Any] | None = None,
    ) -> None:
        columns = DealModel.__table__.c
        if stage_field not in columns:
            raise ValueError(f"Unknown stage column: {stage_field}")
        unknown = [key for key in (scope or {}) if key not in columns]
        if unknown:
            raise ValueError(f"Unknown scope columns: {', '.join(unknown)}")

        self._session_factory = session_factory
        self._stage_field = stage_field
        self._scope = dict(scope or {})

    def _scope_clauses(self) -> list[Any]:
        columns = DealModel.__table__.c
        return [columns[key] == value for key, value in self._scope.items()]

    @_retry_transient
    async def commit_stage(self, deal_id: str, stage_id: str) -> Deal:
        """Conditional single-row update of the stage column and updated_at."""
        now = datetime.now(timezone.utc)
        stmt = (
            update(DealModel)
            .where(DealModel.id == deal_id, *self._scope_clauses())
            .values({self._stage_field: stage_id, "updated_at": now})
            .returning(DealModel)
            .execution_options(synchronize_session=False)
        )

        async for session in self._session_factory():
            result = await session.execute(stmt)
            rows = result.scalars().all()

            if len(rows) != 1:
                await session.rollback()
                logger.warning(
                    "deal_store.commit_no_rows",
                    deal_id=deal_id,
                    stage=stage_id,
                    affected=len(rows),
                )
                raise DealNotFoundError(deal_id)

            await session.commit()
            logger.info(
                "deal_store.stage_committed",
                deal_id=deal_id,
                stage_field=self._stage_field,
                stage=stage_id,
            )
            return Deal.from_record(_model_to_record(rows[0], self._stage_field), self._stage_field)

    @_retry_transient
    async def log_stage_change(
        self, deal_id: str, stage_label: str, subject: str = "Stage"
    ) -> None:
        async for session in self._session_factory():
            session.add(
                DealActivityModel(
                    deal_id=deal_id,
                    activity_type=STAGE_UPDATED_ACTIVITY,
                    description=f"{subject} updated to {stage_label}",
                )
            )
            await session.commit()

    @_retry_transient
    async def load_deals(self) -> list[Deal]:
        stmt = (
            select(DealModel)
            .where(*self._scope_clauses())
            .order_by(DealModel.created_at, DealModel.id)
        )
        async for session in self._session_factory():
            result = await session.execute(stmt)
            return [
                Deal.from_record(_model_to_record(model, self._stage_field), self._stage_field)
                for model in result.scalars().all()
            ]
        return []
