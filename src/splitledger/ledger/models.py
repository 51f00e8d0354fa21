"""SQLAlchemy ORM models for the SplitLedger database.

Groups own their members and expenses own their splits (``delete-orphan``
cascades).
Every table whose balance can be rewritten carries a ``version`` column
used by SQLAlchemy's optimistic concurrency check; a stale write surfaces
as :class:`~splitledger.ledger.errors.ConcurrentWriteLost`.

Monetary values are ``NUMERIC(12, 2)`` and mapped to :class:`~decimal.Decimal`.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

Money = Numeric(12, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for all SplitLedger models."""


# ── Enumerations ──────────────────────────────────────────────────────────────


class FriendshipStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    BLOCKED = "blocked"
    INVITED = "invited"


class FriendRequestStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class MemberRole(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


class SplitType(StrEnum):
    EQUAL = "equal"
    CUSTOM = "custom"
    PERCENTAGE = "percentage"


class PaymentMethod(StrEnum):
    CASH = "cash"
    BANK = "bank"
    UPI = "upi"
    PAYPAL = "paypal"
    MANUAL_SETTLEMENT = "manual_settlement"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MessageType(StrEnum):
    MESSAGE = "message"
    EXPENSE = "expense"
    SYSTEM = "system"


# ── Friendships ───────────────────────────────────────────────────────────────


class Friendship(Base):
    """One directed half of a friendship (the "mirror record").

    ``balance > 0`` means ``other_user_id`` owes ``owner_user_id``.
    """

    __tablename__ = "friendships"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    other_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(Text, nullable=False, default=FriendshipStatus.ACCEPTED)
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("owner_user_id", "other_user_id", name="uq_friendship_pair"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'blocked', 'invited')",
            name="ck_friendship_status",
        ),
    )
    __mapper_args__ = {"version_id_col": version}


class FriendRequest(Base):
    """A pending or answered request to become friends."""

    __tablename__ = "friend_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    from_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    to_user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=FriendRequestStatus.PENDING)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )


# ── Groups ────────────────────────────────────────────────────────────────────


class Group(Base):
    """A group of members sharing expenses.

    ``total_expenses`` moves only with expense amounts, never with payments.
    """

    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    currency: Mapped[str] = mapped_column(Text, nullable=False, default="USD")
    total_expenses: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    invite_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_member_invites: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    members: Mapped[list["GroupMember"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="GroupMember.position",
    )

    __mapper_args__ = {"version_id_col": version}

    def member(self, user_id: str) -> "GroupMember | None":
        """Return the member record for *user_id*, if any."""
        for m in self.members:
            if m.user_id == user_id:
                return m
        return None


class GroupMember(Base):
    """Membership of one user in one group, with their running balance.

    ``balance > 0`` means the group owes this member.
    """

    __tablename__ = "group_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    role: Mapped[str] = mapped_column(Text, nullable=False, default=MemberRole.MEMBER)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Join order; settlement suggestions iterate members in this order.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    group: Mapped["Group"] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        CheckConstraint("role IN ('admin', 'member')", name="ck_group_member_role"),
    )
    __mapper_args__ = {"version_id_col": version}


# ── Expenses ──────────────────────────────────────────────────────────────────


class Expense(Base):
    """A shared expense paid by one member and split across participants."""

    __tablename__ = "expenses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_by: Mapped[str] = mapped_column(Text, nullable=False)
    split_type: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_settlement_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    splits: Mapped[list["ExpenseSplit"]] = relationship(
        back_populates="expense",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ExpenseSplit.position",
    )

    __table_args__ = (
        CheckConstraint(
            "split_type IN ('equal', 'custom', 'percentage')",
            name="ck_expense_split_type",
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    def split_for(self, user_id: str) -> "ExpenseSplit | None":
        for s in self.splits:
            if s.user_id == user_id:
                return s
        return None


class ExpenseSplit(Base):
    """One participant's share of an expense."""

    __tablename__ = "expense_splits"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    expense: Mapped["Expense"] = relationship(back_populates="splits")

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_expense_split_user"),
    )


# ── Payments (append-only audit trail) ────────────────────────────────────────


class Payment(Base):
    """A recorded transfer of money from one user to another.

    Never updated after insert; the balance movement it describes is applied
    separately by the settlement operation that creates it.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    from_user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    to_user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(Text, nullable=False, default=PaymentMethod.MANUAL_SETTLEMENT)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=PaymentStatus.COMPLETED)
    group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    expense_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    settled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )


# ── Side-channel records ──────────────────────────────────────────────────────


class ChatMessage(Base):
    """A message in a group's chat, including ledger system messages."""

    __tablename__ = "group_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False, default=MessageType.SYSTEM)
    expense_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class Notification(Base):
    """An in-app notification addressed to one user."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
