"""Deal board persistence models.

SQLAlchemy models on the shared declarative Base:
- DealModel: Deal records; carries both the sales ``stage`` and the admin
  ``admin_stage`` column so one row feeds every board
- DealActivityModel: Append-only audit trail of deal events
- NotificationModel: In-app notifications created by post-commit hooks
- PartnerModel / AccountUserModel: Notification recipients; both map to the
  login account through ``auth_user_id``
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.dealboard.core.database import Base


class DealModel(Base):
    """A partner-registered deal.

    ``stage`` tracks the sales pipeline; ``admin_stage`` tracks the
    implementation pipeline and is NULL until an admin places the deal.
    """

    __tablename__ = "deals"
    __table_args__ = (
        Index("ix_deals_partner_id", "partner_id"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        server_default=text("gen_random_uuid()"),
    )
    customer_name: Mapped[str] = mapped_column(String(300), nullable=False)
    customer_company: Mapped[str | None] = mapped_column(String(300), nullable=True)
    deal_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    currency: Mapped[str] = mapped_column(
        String(3), default="USD", server_default=text("'USD'")
    )
    stage: Mapped[str | None] = mapped_column(
        String(50), default="new_deal", server_default=text("'new_deal'")
    )
    admin_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    partner_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


class DealActivityModel(Base):
    """Audit entry for a deal (stage changes, notes, ...)."""

    __tablename__ = "deal_activities"
    __table_args__ = (
        Index("ix_deal_activities_deal_id", "deal_id"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        server_default=text("gen_random_uuid()"),
    )
    deal_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class NotificationModel(Base):
    """In-app notification addressed to a user (partner, manager, ...)."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_read: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class PartnerModel(Base):
    """Partner organization contact owning deals (``deals.partner_id``)."""

    __tablename__ = "partners"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        server_default=text("gen_random_uuid()"),
    )
    auth_user_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)


class AccountUserModel(Base):
    """Back-office (accounting) user who processes closed-won invoices."""

    __tablename__ = "account_users"
    __table_args__ = (
        Index("ix_account_users_active", "active"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        server_default=text("gen_random_uuid()"),
    )
    auth_user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true")
    )
