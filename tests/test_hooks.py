"""Tests for post-commit hooks."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.dealboard.board.hooks import (
    AccountUsersClosedWonHook,
    OwnerNotificationHook,
    deal_status_changed,
    format_deal_value,
    invoice_ready,
)
from src.dealboard.board.models import NotificationModel
from src.dealboard.board.schemas import StageChange


def _change(**overrides) -> StageChange:
    values = {
        "board": "admin",
        "deal_id": "d1",
        "deal_name": "Acme",
        "owner_id": "p1",
        "from_stage": "urs",
        "to_stage": "uat",
        "from_label": "URS",
        "to_label": "UAT",
    }
    values.update(overrides)
    return StageChange(**values)


def _session(scalar=None, scalars=()):
    """Mock AsyncSession whose execute() result yields the given rows."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value.all.return_value = list(scalars)

    mock = MagicMock()
    mock.execute = AsyncMock(return_value=result)
    mock.add = MagicMock()
    mock.add_all = MagicMock()
    mock.commit = AsyncMock()
    return mock


def _factory(session):
    async def session_factory():
        yield session

    return session_factory


def test_deal_status_changed_template():
    assert deal_status_changed("Acme", "URS", "UAT") == {
        "title": "Deal Status Updated",
        "message": "Acme status changed from URS to UAT",
        "type": "deal",
    }


def test_invoice_ready_template():
    assert invoice_ready("Acme", "USD 12,500") == {
        "title": "New Invoice Ready",
        "message": 'Deal "Acme" (USD 12,500) has been closed won. Invoice is ready for processing.',
        "type": "invoice",
    }


def test_format_deal_value():
    assert format_deal_value(Decimal("12500.40"), "USD") == "USD 12,500"
    assert format_deal_value(None, "EUR") == "EUR 0"


# ── OwnerNotificationHook ────────────────────────────────────────────────────


class TestOwnerNotification:
    @pytest.mark.asyncio
    async def test_notifies_partner_login(self):
        session = _session(scalar="auth-p1")
        await OwnerNotificationHook(_factory(session))(_change())

        session.execute.assert_awaited_once()
        notification = session.add.call_args.args[0]
        assert isinstance(notification, NotificationModel)
        assert notification.user_id == "auth-p1"
        assert notification.title == "Deal Status Updated"
        assert notification.message == "Acme status changed from URS to UAT"
        assert notification.reference_id == "d1"
        assert notification.reference_type == "deal"
        assert notification.is_read is False
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_user_id_is_never_the_partner_id(self):
        session = _session(scalar="auth-p1")
        await OwnerNotificationHook(_factory(session))(_change(owner_id="p1"))
        assert session.add.call_args.args[0].user_id != "p1"

    @pytest.mark.asyncio
    async def test_skips_partner_without_login(self):
        session = _session(scalar=None)
        await OwnerNotificationHook(_factory(session))(_change())

        session.execute.assert_awaited_once()
        session.add.assert_not_called()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_deal_id_for_name(self):
        session = _session(scalar="auth-p1")
        await OwnerNotificationHook(_factory(session))(_change(deal_name=""))
        assert session.add.call_args.args[0].message.startswith("d1 status changed")

    @pytest.mark.asyncio
    async def test_skips_deals_without_owner(self):
        session = _session(scalar="auth-p1")
        await OwnerNotificationHook(_factory(session))(_change(owner_id=None))
        session.execute.assert_not_awaited()
        session.add.assert_not_called()
        session.commit.assert_not_awaited()

    def test_hook_has_metric_name(self):
        assert OwnerNotificationHook(_factory(_session())).name == "owner_notification"


# ── AccountUsersClosedWonHook ────────────────────────────────────────────────


def _closed_won(**overrides) -> StageChange:
    values = {
        "from_stage": "negotiation",
        "to_stage": "closed_won",
        "from_label": "Negotiation",
        "to_label": "Closed Won",
        "value": Decimal("12500"),
        "currency": "USD",
    }
    values.update(overrides)
    return _change(**values)


class TestAccountUsersClosedWon:
    @pytest.mark.asyncio
    async def test_notifies_every_active_account_user(self):
        session = _session(scalars=["u1", "u2"])
        await AccountUsersClosedWonHook(_factory(session))(_closed_won())

        notifications = session.add_all.call_args.args[0]
        assert [n.user_id for n in notifications] == ["u1", "u2"]
        for n in notifications:
            assert isinstance(n, NotificationModel)
            assert n.title == "New Invoice Ready"
            assert n.type == "invoice"
            assert n.message == (
                'Deal "Acme" (USD 12,500) has been closed won. '
                "Invoice is ready for processing."
            )
            assert n.reference_id == "d1"
            assert n.reference_type == "deal"
            assert n.is_read is False
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ignores_moves_within_closed_won(self):
        session = _session(scalars=["u1"])
        await AccountUsersClosedWonHook(_factory(session))(
            _closed_won(from_stage="closed_won", from_label="Closed Won")
        )
        session.execute.assert_not_awaited()
        session.add_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_ignores_other_target_stages(self):
        session = _session(scalars=["u1"])
        await AccountUsersClosedWonHook(_factory(session))(_change())
        session.execute.assert_not_awaited()
        session.add_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_account_users_writes_nothing(self):
        session = _session(scalars=[])
        await AccountUsersClosedWonHook(_factory(session))(_closed_won())

        session.execute.assert_awaited_once()
        session.add_all.assert_not_called()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_value_renders_zero(self):
        session = _session(scalars=["u1"])
        await AccountUsersClosedWonHook(_factory(session))(_closed_won(value=None))
        assert "(USD 0)" in session.add_all.call_args.args[0][0].message

    def test_hook_has_metric_name(self):
        hook = AccountUsersClosedWonHook(_factory(_session()))
        assert hook.name == "account_users_closed_won"
