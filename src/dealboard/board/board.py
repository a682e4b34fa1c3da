"""Stage board -- optimistic drag-and-drop stage changes with rollback.

One generic board, parameterized by a BoardConfig (stage registry, stage
field, collapsed groups) and a StageStore. The admin, partner-manager and
partner boards differ only in configuration.

Gesture flow:
1. drag_start(deal) opens the drag session at the deal's current stage
2. drag_over(target) resolves the target stage (a visible column, or the
   column of the deal under the pointer) and moves the deal there in the
   working copy right away for live feedback
3. drag_end(target) either commits the final stage, or, when there is no
   valid target, puts the deal back where the drag started
4. the commit runs against the store; on failure the working copy is
   reverted to the last known-good baseline and an error is reported; on
   success the baseline absorbs the committed deal and the container is
   called back with it

Commits are serialized per deal and the latest gesture wins: a commit that
is no longer the newest for its deal by the time it gets the deal's lock is
skipped. Audit logging and hooks run in background tasks after a successful
commit and can never undo it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from src.dealboard.board.errors import NoActiveDragError, StageCommitError
from src.dealboard.board.hooks import StageChangeHook
from src.dealboard.board.registry import StageRegistry
from src.dealboard.board.schemas import (
    Deal,
    DragResult,
    DragStatus,
    Stage,
    StageChange,
    StageColumn,
)
from src.dealboard.board.session import ActiveDrag, DragSession
from src.dealboard.board.state import BoardState
from src.dealboard.board.store import StageStore
from src.dealboard.core.monitoring import (
    side_effect_failures_total,
    stage_commits_total,
    track_stage_commit,
)

logger = structlog.get_logger(__name__)

GENERIC_FAILURE_REASON = "Please try again."


@dataclass(frozen=True)
class BoardConfig:
    """Everything that distinguishes one board from another.

    Attributes:
        name: Board identifier (used in routes, logs, metrics).
        registry: Stages shown on this board and the fallback stage.
        stage_field: Deal record field this board reads and writes.
        collapsed_groups: Stage groups hidden when the board is created.
        notify_owner: Whether committed moves notify the deal owner.
        notify_account_users: Whether a first move into Closed Won notifies
            the active account users.
        activity_subject: Subject of the audit entry, as in
            "<subject> updated to <stage label>".
    """

    name: str
    registry: StageRegistry
    stage_field: str = "stage"
    collapsed_groups: frozenset[str] = field(default_factory=frozenset)
    notify_owner: bool = False
    notify_account_users: bool = False
    activity_subject: str = "Stage"


class StageBoard:
    """Optimistic stage board over a StageStore.

    Args:
        config: Board configuration.
        store: Persistence adapter for commits, audit entries and reloads.
        on_update: Called with the authoritative deal list after every
            commit attempt (success or rollback).
        on_error: Called with a user-facing message when a commit fails.
        hooks: Post-commit hooks, run fire-and-forget after the audit entry.
    """

    def __init__(
        self,
        config: BoardConfig,
        store: StageStore,
        on_update: Callable[[list[Deal]], Any] | None = None,
        on_error: Callable[[str], Any] | None = None,
        hooks: Sequence[StageChangeHook] = (),
    ) -> None:
        self._config = config
        self._registry = config.registry
        self._store = store
        self._on_update = on_update
        self._on_error = on_error
        self._hooks = tuple(hooks)

        self._state = BoardState(config.registry, config.stage_field)
        self._session = DragSession()
        self._baseline: tuple[Deal, ...] = ()
        self._pending: ActiveDrag | None = None
        self._collapsed: set[str] = set(config.collapsed_groups)

        # Per-deal commit bookkeeping: newest ticket, commits in flight, lock
        self._tickets: dict[str, int] = {}
        self._inflight: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._side_effects: set[asyncio.Task[None]] = set()

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> BoardConfig:
        return self._config

    @property
    def registry(self) -> StageRegistry:
        return self._registry

    @property
    def state(self) -> BoardState:
        return self._state

    @property
    def baseline(self) -> tuple[Deal, ...]:
        """Last known-good (committed) deal set."""
        return self._baseline

    @property
    def active_drag(self) -> ActiveDrag | None:
        return self._session.active

    @property
    def pending_move(self) -> ActiveDrag | None:
        """Move waiting for confirmation, if any."""
        return self._pending

    @property
    def collapsed_groups(self) -> frozenset[str]:
        return frozenset(self._collapsed)

    # ── Loading ─────────────────────────────────────────────────────────────

    def initialize(self, items: Iterable[Deal | Mapping[str, Any]]) -> None:
        """Adopt ``items`` as both baseline and working copy; drops any drag."""
        deals = self._state.normalize(items)
        self._baseline = deals
        self._state.initialize(deals)
        self._session.reset()
        self._pending = None
        logger.debug("board.initialized", board=self.name, deals=len(deals))

    async def refresh(self) -> None:
        """Reload the board from the store."""
        deals = await self._store.load_deals()
        self.initialize(deals)
        logger.info("board.refreshed", board=self.name, deals=len(deals))

    # ── Columns ─────────────────────────────────────────────────────────────

    def visible_stages(self) -> list[Stage]:
        return [s for s in self._registry.list_stages() if s.group not in self._collapsed]

    def expand(self, group: str) -> None:
        self._check_group(group)
        self._collapsed.discard(group)

    def collapse(self, group: str) -> None:
        self._check_group(group)
        self._collapsed.add(group)

    def _check_group(self, group: str) -> None:
        if group not in self._registry.groups():
            raise KeyError(f"Unknown stage group: {group}")

    def column(self, stage: Stage) -> StageColumn:
        deals = self._state.items_in_stage(stage.id)
        return StageColumn(
            stage=stage,
            deals=deals,
            count=len(deals),
            total_value=self._state.aggregate_value(stage.id),
            currency=deals[0].currency if deals else "USD",
        )

    def columns(self) -> list[StageColumn]:
        """Visible columns in order, with their deals and totals."""
        return [self.column(stage) for stage in self.visible_stages()]

    def hidden_counts(self) -> dict[str, int]:
        """Deal count per collapsed group (badge on the collapsed divider)."""
        return {
            group: sum(self._state.count(s.id) for s in self._registry.stages_in_group(group))
            for group in self._registry.groups()
            if group in self._collapsed
        }

    # ── Drag Handlers ───────────────────────────────────────────────────────

    def resolve_target(self, target_id: str | None) -> str | None:
        """Stage a drop target stands for: a visible column, or a deal's column."""
        if target_id is None:
            return None
        visible = {s.id for s in self.visible_stages()}
        if target_id in visible:
            return target_id
        deal = self._state.get(target_id)
        if deal is not None and deal.stage in visible:
            return deal.stage
        return None

    def drag_start(self, deal_id: str) -> ActiveDrag | None:
        """Begin dragging a deal. Unknown deals are ignored (returns None)."""
        if self._session.is_dragging:
            logger.warning(
                "board.drag_restarted",
                board=self.name,
                previous_deal_id=self._session.active.deal_id,
                deal_id=deal_id,
            )
            self.drag_cancel()
        if self._pending is not None:
            self.cancel_pending()

        deal = self._state.get(deal_id)
        if deal is None:
            logger.debug("board.drag_start_unknown_deal", board=self.name, deal_id=deal_id)
            return None
        return self._session.start(deal.id, deal.stage)

    def drag_over(self, target_id: str | None) -> str | None:
        """Preview the drag over ``target_id``; returns the provisional stage.

        Raises:
            NoActiveDragError: If no drag is in progress.
        """
        active = self._require_drag()
        stage = self.resolve_target(target_id)
        if stage is None:
            return None
        self._session.over(stage)
        self._state.reassign(active.deal_id, stage)
        return stage

    def drag_cancel(self) -> ActiveDrag | None:
        """Abort the drag and undo its preview."""
        active = self._session.cancel()
        if active is not None:
            self._state.reassign(active.deal_id, active.origin_stage)
            logger.debug("board.drag_cancelled", board=self.name, deal_id=active.deal_id)
        return active

    async def drag_end(self, target_id: str | None) -> DragResult:
        """Finish the drag and commit the deal's final stage.

        Raises:
            NoActiveDragError: If no drag is in progress.
        """
        self._require_drag()
        active = self._session.end()
        stage = self.resolve_target(target_id)

        if stage is None:
            self._state.reassign(active.deal_id, active.origin_stage)
            logger.debug("board.drop_without_target", board=self.name, deal_id=active.deal_id)
            return DragResult(status=DragStatus.NO_TARGET, deal_id=active.deal_id)

        self._state.reassign(active.deal_id, stage)
        return await self._finish_move(active.deal_id, stage, active.origin_stage)

    async def confirm_pending(self) -> DragResult:
        """Commit the move that was waiting for confirmation."""
        pending = self._pending
        if pending is None:
            raise NoActiveDragError("No move awaiting confirmation")
        self._pending = None
        return await self._commit(pending.deal_id, pending.provisional_stage)

    def cancel_pending(self) -> ActiveDrag | None:
        """Drop the move waiting for confirmation and undo its preview."""
        pending, self._pending = self._pending, None
        if pending is not None:
            self._state.reassign(pending.deal_id, pending.origin_stage)
        return pending

    def _require_drag(self) -> ActiveDrag:
        active = self._session.active
        if active is None:
            raise NoActiveDragError("No drag in progress")
        return active

    # ── Commit ──────────────────────────────────────────────────────────────

    def _baseline_deal(self, deal_id: str) -> Deal | None:
        for deal in self._baseline:
            if deal.id == deal_id:
                return deal
        return None

    async def _finish_move(self, deal_id: str, stage: str, origin_stage: str) -> DragResult:
        known_good = self._baseline_deal(deal_id)
        if known_good is None or self._state.get(deal_id) is None:
            return DragResult(status=DragStatus.IGNORED, deal_id=deal_id, stage=stage)

        if stage == known_good.stage and deal_id not in self._inflight:
            return DragResult(status=DragStatus.NO_CHANGE, deal_id=deal_id, stage=stage)

        target = self._registry.get(stage)
        if target is not None and target.requires_confirmation:
            self._pending = ActiveDrag(
                deal_id=deal_id, origin_stage=origin_stage, provisional_stage=stage
            )
            logger.info(
                "board.move_awaiting_confirmation",
                board=self.name,
                deal_id=deal_id,
                stage=stage,
            )
            return DragResult(
                status=DragStatus.PENDING_CONFIRMATION, deal_id=deal_id, stage=stage
            )

        return await self._commit(deal_id, stage)

    async def _commit(self, deal_id: str, stage: str) -> DragResult:
        ticket = self._tickets.get(deal_id, 0) + 1
        self._tickets[deal_id] = ticket
        self._inflight[deal_id] = self._inflight.get(deal_id, 0) + 1
        lock = self._locks.setdefault(deal_id, asyncio.Lock())

        try:
            async with lock:
                if self._tickets.get(deal_id) != ticket:
                    stage_commits_total.labels(board=self.name, outcome="superseded").inc()
                    logger.info(
                        "board.commit_superseded",
                        board=self.name,
                        deal_id=deal_id,
                        stage=stage,
                    )
                    return DragResult(status=DragStatus.SUPERSEDED, deal_id=deal_id, stage=stage)
                return await self._commit_locked(deal_id, stage, ticket)
        finally:
            self._inflight[deal_id] -= 1
            if not self._inflight[deal_id]:
                del self._inflight[deal_id]
                self._tickets.pop(deal_id, None)
                self._locks.pop(deal_id, None)

    async def _commit_locked(self, deal_id: str, stage: str, ticket: int) -> DragResult:
        before = self._baseline_deal(deal_id)
        from_stage = before.stage if before is not None else self._registry.fallback

        try:
            async with track_stage_commit(self.name) as tracker:
                try:
                    committed = await self._store.commit_stage(deal_id, stage)
                except StageCommitError:
                    tracker["outcome"] = "rejected"
                    raise
        except StageCommitError as exc:
            logger.warning(
                "board.commit_rejected",
                board=self.name,
                deal_id=deal_id,
                stage=stage,
                reason=exc.reason,
            )
            return self._rollback(deal_id, stage, exc.reason)
        except Exception:
            logger.error(
                "board.commit_failed",
                board=self.name,
                deal_id=deal_id,
                stage=stage,
                exc_info=True,
            )
            return self._rollback(deal_id, stage, GENERIC_FAILURE_REASON)

        committed = self._state.normalize([committed])[0]
        if before is not None:
            committed = self._merge(before, committed)
        self._baseline = tuple(committed if d.id == deal_id else d for d in self._baseline)
        if self._tickets.get(deal_id) == ticket:
            self._state.replace(committed)
            self._reapply_previews()

        logger.info(
            "board.stage_committed",
            board=self.name,
            deal_id=deal_id,
            from_stage=from_stage,
            to_stage=committed.stage,
        )

        self._dispatch_side_effects(
            StageChange(
                board=self.name,
                deal_id=deal_id,
                deal_name=committed.display_name,
                owner_id=committed.owner_id,
                value=committed.value,
                currency=committed.currency,
                from_stage=from_stage,
                to_stage=committed.stage,
                from_label=self._registry.label_for(from_stage),
                to_label=self._registry.label_for(committed.stage),
            )
        )
        self._notify_update()
        return DragResult(
            status=DragStatus.COMMITTED, deal_id=deal_id, stage=committed.stage, deal=committed
        )

    @staticmethod
    def _merge(before: Deal, committed: Deal) -> Deal:
        """Fill fields the store did not return from the known-good deal."""
        missing = {
            key: getattr(before, key)
            for key in ("name", "company", "value", "owner_id")
            if getattr(committed, key) in (None, "") and getattr(before, key) not in (None, "")
        }
        return committed.model_copy(update=missing) if missing else committed

    def _rollback(self, deal_id: str, stage: str, reason: str) -> DragResult:
        self._state.revert_to(self._baseline)
        self._reapply_previews()

        message = f"Failed to update deal stage: {reason}"
        self._notify_error(message)
        self._notify_update()

        known_good = self._baseline_deal(deal_id)
        return DragResult(
            status=DragStatus.FAILED,
            deal_id=deal_id,
            stage=known_good.stage if known_good is not None else None,
            message=message,
        )

    def _reapply_previews(self) -> None:
        # A gesture started while the commit was in flight keeps its preview
        for live in (self._session.active, self._pending):
            if live is not None and live.provisional_stage is not None:
                self._state.reassign(live.deal_id, live.provisional_stage)

    def _notify_error(self, message: str) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(message)
        except Exception:
            logger.error("board.error_callback_failed", board=self.name, exc_info=True)

    def _notify_update(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(list(self._baseline))
        except Exception:
            logger.error("board.update_callback_failed", board=self.name, exc_info=True)

    # ── Side Effects ────────────────────────────────────────────────────────

    def _dispatch_side_effects(self, change: StageChange) -> None:
        task = asyncio.create_task(
            self._run_side_effects(change),
            name=f"stage-board:{self.name}:{change.deal_id}",
        )
        self._side_effects.add(task)
        task.add_done_callback(self._side_effects.discard)

    async def _run_side_effects(self, change: StageChange) -> None:
        try:
            await self._store.log_stage_change(
                change.deal_id, change.to_label, subject=self._config.activity_subject
            )
        except Exception as exc:
            side_effect_failures_total.labels(board=self.name, effect="audit_log").inc()
            logger.warning(
                "board.audit_log_failed",
                board=self.name,
                deal_id=change.deal_id,
                error=str(exc),
            )

        for hook in self._hooks:
            effect = getattr(hook, "name", type(hook).__name__)
            try:
                await hook(change)
            except Exception as exc:
                side_effect_failures_total.labels(board=self.name, effect=effect).inc()
                logger.warning(
                    "board.hook_failed",
                    board=self.name,
                    hook=effect,
                    deal_id=change.deal_id,
                    error=str(exc),
                )

    async def aclose(self) -> None:
        """Wait for outstanding side-effect tasks."""
        while self._side_effects:
            await asyncio.gather(*list(self._side_effects), return_exceptions=True)

    def totals(self) -> Decimal:
        """Sum of all deal values on the board."""
        return sum((d.value for d in self._state.snapshot if d.value is not None), Decimal(0))
