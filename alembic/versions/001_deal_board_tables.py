"""Create deal board tables: deals, deal activity trail, notifications.

Revision ID: 001_deal_board
Revises:
Create Date: 2026-10-19

- deals: partner deals with the sales ``stage`` and the admin ``admin_stage``
- deal_activities: append-only audit trail ("Stage updated to ...")
- notifications: in-app notifications for deal owners

No foreign key constraints (referential integrity is enforced by the
application, deals are looked up by id only).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_deal_board"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── deals table ─────────────────────────────────────────────────────

    op.create_table(
        "deals",
        _id_column(),
        sa.Column("customer_name", sa.String(300), nullable=False),
        sa.Column("customer_company", sa.String(300), nullable=True),
        sa.Column("deal_value", sa.Numeric(14, 2), nullable=True),
        sa.Column(
            "currency",
            sa.String(3),
            server_default=sa.text("'USD'"),
            nullable=False,
        ),
        sa.Column(
            "stage",
            sa.String(50),
            server_default=sa.text("'new_deal'"),
            nullable=True,
        ),
        sa.Column("admin_stage", sa.String(50), nullable=True),
        sa.Column("partner_id", UUID(as_uuid=False), nullable=True),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_deals_partner_id", "deals", ["partner_id"])

    # ── deal_activities table ───────────────────────────────────────────

    op.create_table(
        "deal_activities",
        _id_column(),
        sa.Column("deal_id", UUID(as_uuid=False), nullable=False),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        _created_at_column(),
    )
    op.create_index("ix_deal_activities_deal_id", "deal_activities", ["deal_id"])

    # ── notifications table ─────────────────────────────────────────────

    op.create_table(
        "notifications",
        _id_column(),
        sa.Column("user_id", UUID(as_uuid=False), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column(
            "is_read",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        _created_at_column(),
    )
    op.create_index(
        "ix_notifications_user_unread", "notifications", ["user_id", "is_read"]
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_user_unread", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_deal_activities_deal_id", table_name="deal_activities")
    op.drop_table("deal_activities")

    op.drop_index("ix_deals_partner_id", table_name="deals")
    op.drop_table("deals")
