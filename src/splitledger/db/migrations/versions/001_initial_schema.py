"""Initial schema: friendships, groups, expenses, payments, side channels.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid, primary_key=True)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _version() -> sa.Column:
    return sa.Column("version", sa.Integer, nullable=False, server_default="1")


def upgrade() -> None:
    # ── friendships ───────────────────────────────────────────────────
    op.create_table(
        "friendships",
        _id(),
        sa.Column("owner_user_id", sa.Text, nullable=False),
        sa.Column("other_user_id", sa.Text, nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.Text, nullable=False, server_default="accepted"),
        _timestamp("last_activity"),
        _timestamp("created_at"),
        _version(),
        sa.UniqueConstraint("owner_user_id", "other_user_id", name="uq_friendship_pair"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'blocked', 'invited')",
            name="ck_friendship_status",
        ),
    )
    op.create_index("ix_friendships_owner_user_id", "friendships", ["owner_user_id"])

    # ── friend_requests ───────────────────────────────────────────────
    op.create_table(
        "friend_requests",
        _id(),
        sa.Column("from_user_id", sa.Text, nullable=False),
        sa.Column("to_user_id", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_friend_requests_to_user_id", "friend_requests", ["to_user_id"])

    # ── groups ────────────────────────────────────────────────────────
    op.create_table(
        "groups",
        _id(),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_by", sa.Text, nullable=False),
        sa.Column("currency", sa.Text, nullable=False, server_default="USD"),
        sa.Column("total_expenses", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("invite_code", sa.Text, nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("allow_member_invites", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("require_approval", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _version(),
    )

    op.create_table(
        "group_members",
        _id(),
        sa.Column(
            "group_id",
            sa.Uuid,
            sa.ForeignKey("groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("role", sa.Text, nullable=False, server_default="member"),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        _timestamp("joined_at"),
        _version(),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        sa.CheckConstraint("role IN ('admin', 'member')", name="ck_group_member_role"),
    )
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

    # ── expenses ──────────────────────────────────────────────────────
    op.create_table(
        "expenses",
        _id(),
        sa.Column(
            "group_id",
            sa.Uuid,
            sa.ForeignKey("groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.Text, nullable=False),
        sa.Column("category", sa.Text, nullable=True),
        sa.Column("paid_by", sa.Text, nullable=False),
        sa.Column("split_type", sa.Text, nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("is_settled", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("last_settlement_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _version(),
        sa.CheckConstraint(
            "split_type IN ('equal', 'custom', 'percentage')",
            name="ck_expense_split_type",
        ),
    )
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])

    op.create_table(
        "expense_splits",
        _id(),
        sa.Column(
            "expense_id",
            sa.Uuid,
            sa.ForeignKey("expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_paid", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("paid_at", nullable=True),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("expense_id", "user_id", name="uq_expense_split_user"),
    )

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        _id(),
        sa.Column("from_user_id", sa.Text, nullable=False),
        sa.Column("to_user_id", sa.Text, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.Text, nullable=False),
        sa.Column("method", sa.Text, nullable=False, server_default="manual_settlement"),
        sa.Column("status", sa.Text, nullable=False, server_default="completed"),
        sa.Column("group_id", sa.Uuid, nullable=True),
        sa.Column("expense_id", sa.Uuid, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        _timestamp("settled_at"),
        _timestamp("created_at"),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )
    op.create_index("ix_payments_from_user_id", "payments", ["from_user_id"])
    op.create_index("ix_payments_to_user_id", "payments", ["to_user_id"])
    op.create_index("ix_payments_group_id", "payments", ["group_id"])

    # ── side channels ─────────────────────────────────────────────────
    op.create_table(
        "group_messages",
        _id(),
        sa.Column("group_id", sa.Uuid, nullable=False),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False, server_default="system"),
        sa.Column("expense_id", sa.Uuid, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_group_messages_group_id", "group_messages", ["group_id"])

    op.create_table(
        "notifications",
        _id(),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("group_messages")
    op.drop_table("payments")
    op.drop_table("expense_splits")
    op.drop_table("expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("friend_requests")
    op.drop_table("friendships")
