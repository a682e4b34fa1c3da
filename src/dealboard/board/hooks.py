"""Post-commit hooks run after a stage change is persisted.

Hooks are fire-and-forget: the board dispatches them in a background task
after a successful commit, logs their failures, and never rolls back or
reports to the user because of them.

Notifications are addressed to login accounts (``auth_user_id``), so each
hook resolves its recipients before writing ``notifications`` rows.

Exports:
    StageChangeHook: Callable protocol every hook satisfies.
    OwnerNotificationHook: Notifies the deal owner (partner) of the move.
    AccountUsersClosedWonHook: Tells account users an invoice is ready when
        a deal first reaches Closed Won.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from decimal import Decimal
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.dealboard.board.models import AccountUserModel, NotificationModel, PartnerModel
from src.dealboard.board.schemas import StageChange

logger = structlog.get_logger(__name__)

CLOSED_WON_STAGE = "closed_won"

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


class StageChangeHook(Protocol):
    """An async callable invoked with each committed StageChange."""

    async def __call__(self, change: StageChange) -> None: ...


# ── Templates ────────────────────────────────────────────────────────────────


def deal_status_changed(deal_name: str, old_status: str, new_status: str) -> dict[str, str]:
    """Notification template for a deal moving between stages."""
    return {
        "title": "Deal Status Updated",
        "message": f"{deal_name} status changed from {old_status} to {new_status}",
        "type": "deal",
    }


def format_deal_value(value: Decimal | None, currency: str = "USD") -> str:
    """Whole-unit amount with thousands separators, e.g. ``USD 12,500``."""
    if not value:
        return f"{currency} 0"
    return f"{currency} {value:,.0f}"


def invoice_ready(deal_name: str, deal_value: str) -> dict[str, str]:
    """Notification template for account users when a deal is closed won."""
    return {
        "title": "New Invoice Ready",
        "message": (
            f'Deal "{deal_name}" ({deal_value}) has been closed won. '
            "Invoice is ready for processing."
        ),
        "type": "invoice",
    }


# ── Hooks ────────────────────────────────────────────────────────────────────


class OwnerNotificationHook:
    """Creates an in-app notification for the deal's owner.

    The deal stores the partner id; the notification goes to the partner's
    login account. Deals without an owner, and partners without a login,
    are skipped.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    name = "owner_notification"

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def __call__(self, change: StageChange) -> None:
        if not change.owner_id:
            return

        template = deal_status_changed(
            change.deal_name or change.deal_id, change.from_label, change.to_label
        )
        async for session in self._session_factory():
            result = await session.execute(
                select(PartnerModel.auth_user_id).where(PartnerModel.id == change.owner_id)
            )
            user_id = result.scalar_one_or_none()
            if user_id is None:
                logger.info(
                    "hooks.owner_without_login",
                    board=change.board,
                    deal_id=change.deal_id,
                    partner_id=change.owner_id,
                )
                return

            session.add(
                NotificationModel(
                    user_id=str(user_id),
                    title=template["title"],
                    message=template["message"],
                    type=template["type"],
                    is_read=False,
                    reference_id=change.deal_id,
                    reference_type="deal",
                )
            )
            await session.commit()

        logger.info(
            "hooks.owner_notified",
            board=change.board,
            deal_id=change.deal_id,
            partner_id=change.owner_id,
        )


class AccountUsersClosedWonHook:
    """Notifies every active account user that a closed-won deal needs invoicing.

    Fires only on the move into Closed Won, not on moves within it.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    name = "account_users_closed_won"

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def __call__(self, change: StageChange) -> None:
        if change.to_stage != CLOSED_WON_STAGE or change.from_stage == CLOSED_WON_STAGE:
            return

        template = invoice_ready(
            change.deal_name or change.deal_id,
            format_deal_value(change.value, change.currency),
        )
        async for session in self._session_factory():
            result = await session.execute(
                select(AccountUserModel.auth_user_id).where(AccountUserModel.active.is_(True))
            )
            recipients = [str(uid) for uid in result.scalars().all()]
            if not recipients:
                return

            session.add_all(
                [
                    NotificationModel(
                        user_id=user_id,
                        title=template["title"],
                        message=template["message"],
                        type=template["type"],
                        is_read=False,
                        reference_id=change.deal_id,
                        reference_type="deal",
                    )
                    for user_id in recipients
                ]
            )
            await session.commit()

        logger.info(
            "hooks.account_users_notified",
            board=change.board,
            deal_id=change.deal_id,
            recipients=len(recipients),
        )
