"""Database repository for ledger documents.

Provides async functions for loading and persisting groups, expenses,
friendships, friend requests and payments.  Functions never commit; the
caller's :func:`~splitledger.db.session.get_session` block decides the
transaction boundary.

``require_*`` variants raise the matching
:class:`~splitledger.ledger.errors.NotFound` subclass instead of returning
``None``.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from splitledger.ledger.errors import (
    ConcurrentWriteLost,
    ExpenseNotFound,
    FriendRequestNotFound,
    GroupNotFound,
)
from splitledger.ledger.models import (
    Expense,
    ExpenseSplit,
    FriendRequest,
    Friendship,
    FriendRequestStatus,
    FriendshipStatus,
    Group,
    GroupMember,
    Payment,
    PaymentMethod,
    PaymentStatus,
)


async def flush_or_conflict(session: AsyncSession) -> None:
    """Flush pending writes, translating a lost version race.

    Raises:
        ConcurrentWriteLost: If another transaction updated or deleted a
            versioned row after this session loaded it.
    """
    try:
        await session.flush()
    except StaleDataError as exc:
        raise ConcurrentWriteLost(
            "Balance document was modified by another writer",
            {"cause": str(exc)},
        ) from exc


# ── Groups ───────────────────────────────────────────────────────────────────


async def get_group(session: AsyncSession, group_id: uuid.UUID) -> Group | None:
    """Load a group with its members."""
    return await session.get(Group, group_id)


async def require_group(session: AsyncSession, group_id: uuid.UUID) -> Group:
    group = await get_group(session, group_id)
    if group is None:
        raise GroupNotFound(group_id)
    return group


async def get_group_by_invite_code(session: AsyncSession, invite_code: str) -> Group | None:
    stmt = select(Group).where(
        Group.invite_code == invite_code.strip().upper(),
        Group.is_active.is_(True),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_groups(session: AsyncSession, user_id: str) -> list[Group]:
    """Return the active groups *user_id* is an active member of."""
    stmt = (
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(
            GroupMember.user_id == user_id,
            GroupMember.is_active.is_(True),
            Group.is_active.is_(True),
        )
        .order_by(Group.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().unique().all())


# ── Expenses ─────────────────────────────────────────────────────────────────


async def get_expense(session: AsyncSession, expense_id: uuid.UUID) -> Expense | None:
    """Load an expense with its splits."""
    return await session.get(Expense, expense_id)


async def require_expense(session: AsyncSession, expense_id: uuid.UUID) -> Expense:
    expense = await get_expense(session, expense_id)
    if expense is None:
        raise ExpenseNotFound(expense_id)
    return expense


async def save_expense(
    session: AsyncSession,
    *,
    group_id: uuid.UUID,
    description: str,
    amount: Decimal,
    currency: str,
    paid_by: str,
    split_type: str,
    splits: Sequence[tuple[str, Decimal, Decimal | None]],
    category: str | None = None,
    notes: str | None = None,
) -> Expense:
    """Persist a new expense and its splits.

    Args:
        splits: ``(user_id, amount, percentage)`` triples in display order.
            The payer's own split is stored as already paid.

    Returns:
        The newly created :class:`Expense` (with ``id`` populated after
        flush).
    """
    expense = Expense(
        group_id=group_id,
        description=description,
        amount=amount,
        currency=currency,
        category=category,
        paid_by=paid_by,
        split_type=split_type,
        notes=notes,
        is_settled=False,
    )
    expense.splits = [
        ExpenseSplit(
            user_id=user_id,
            amount=split_amount,
            percentage=percentage,
            is_paid=user_id == paid_by,
            position=index,
        )
        for index, (user_id, split_amount, percentage) in enumerate(splits)
    ]
    session.add(expense)
    await session.flush()
    return expense


async def get_group_expenses(
    session: AsyncSession,
    group_id: uuid.UUID,
    limit: int | None = None,
) -> list[Expense]:
    """Return a group's expenses, newest first."""
    stmt = (
        select(Expense)
        .where(Expense.group_id == group_id)
        .order_by(Expense.created_at.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ── Friendships ──────────────────────────────────────────────────────────────


async def get_friendship(
    session: AsyncSession,
    owner_user_id: str,
    other_user_id: str,
) -> Friendship | None:
    """Return the ``owner → other`` mirror record, whatever its status."""
    stmt = select(Friendship).where(
        Friendship.owner_user_id == owner_user_id,
        Friendship.other_user_id == other_user_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_friendships(
    session: AsyncSession,
    user_id: str,
    status: FriendshipStatus | None = FriendshipStatus.ACCEPTED,
) -> list[Friendship]:
    """Return *user_id*'s own mirror records, most recently active first."""
    stmt = select(Friendship).where(Friendship.owner_user_id == user_id)
    if status is not None:
        stmt = stmt.where(Friendship.status == status)
    stmt = stmt.order_by(Friendship.last_activity.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ── Friend requests ──────────────────────────────────────────────────────────


async def require_friend_request(session: AsyncSession, request_id: uuid.UUID) -> FriendRequest:
    request = await session.get(FriendRequest, request_id)
    if request is None:
        raise FriendRequestNotFound(request_id)
    return request


async def get_pending_request_between(
    session: AsyncSession,
    user_a: str,
    user_b: str,
) -> FriendRequest | None:
    """Return a pending request in either direction, if one exists."""
    stmt = (
        select(FriendRequest)
        .where(
            FriendRequest.status == FriendRequestStatus.PENDING,
            or_(
                (FriendRequest.from_user_id == user_a) & (FriendRequest.to_user_id == user_b),
                (FriendRequest.from_user_id == user_b) & (FriendRequest.to_user_id == user_a),
            ),
        )
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


# ── Payments ─────────────────────────────────────────────────────────────────


async def save_payment(
    session: AsyncSession,
    *,
    from_user_id: str,
    to_user_id: str,
    amount: Decimal,
    currency: str,
    method: str = PaymentMethod.MANUAL_SETTLEMENT,
    group_id: uuid.UUID | None = None,
    expense_id: uuid.UUID | None = None,
    description: str | None = None,
) -> Payment:
    """Append a completed payment to the audit trail.

    The payment row itself moves no balance; see
    :func:`splitledger.ledger.settlements.mark_payment_as_paid`.
    """
    payment = Payment(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount=amount,
        currency=currency,
        method=method,
        status=PaymentStatus.COMPLETED,
        group_id=group_id,
        expense_id=expense_id,
        description=description,
    )
    session.add(payment)
    await session.flush()
    return payment


async def get_group_payments(session: AsyncSession, group_id: uuid.UUID) -> list[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.group_id == group_id, Payment.status == PaymentStatus.COMPLETED)
        .order_by(Payment.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_user_payments(
    session: AsyncSession,
    user_id: str,
    limit: int = 20,
) -> list[Payment]:
    """Return payments sent or received by *user_id*, newest first."""
    stmt = (
        select(Payment)
        .where(or_(Payment.from_user_id == user_id, Payment.to_user_id == user_id))
        .order_by(Payment.created_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_expense_paid_total(
    session: AsyncSession,
    expense_id: uuid.UUID,
    from_user_id: str,
    to_user_id: str,
) -> Decimal:
    """Return what *from_user_id* has already paid *to_user_id* against an expense."""
    stmt = select(func.coalesce(func.sum(Payment.amount), 0)).where(
        Payment.expense_id == expense_id,
        Payment.from_user_id == from_user_id,
        Payment.to_user_id == to_user_id,
        Payment.status == PaymentStatus.COMPLETED,
    )
    result = await session.execute(stmt)
    return Decimal(str(result.scalar_one()))
