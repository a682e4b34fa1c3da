"""Add notification recipient tables: partners, account_users.

Revision ID: 002_notification_recipients
Revises: 001_deal_board
Create Date: 2026-10-19

- partners: deal owners; ``auth_user_id`` is the login notified of moves
- account_users: back-office users told when a deal is closed won
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "002_notification_recipients"
down_revision: Union[str, None] = "001_deal_board"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def upgrade() -> None:
    op.create_table(
        "partners",
        _id_column(),
        sa.Column("auth_user_id", UUID(as_uuid=False), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
    )

    op.create_table(
        "account_users",
        _id_column(),
        sa.Column("auth_user_id", UUID(as_uuid=False), nullable=False),
        sa.Column(
            "active",
            sa.Boolean(),
            server_default=sa.text("true"),
            nullable=False,
        ),
    )
    op.create_index("ix_account_users_active", "account_users", ["active"])


def downgrade() -> None:
    op.drop_index("ix_account_users_active", table_name="account_users")
    op.drop_table("account_users")
    op.drop_table("partners")
