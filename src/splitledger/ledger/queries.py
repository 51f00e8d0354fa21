"""Read models over the ledger.

Nothing here writes.  :func:`get_balance_summary` combines stored friend
balances with per-group pairwise balances for group members who are not
friends, which are rebuilt by replaying the group's expenses and payments
through the same effect functions the writers use.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.config import settings
from splitledger.ledger.balance import ZERO, friend_pair, payment_effects
from splitledger.ledger.expenses import effects_of
from splitledger.ledger.models import Expense, Payment
from splitledger.ledger.repository import (
    get_friendships,
    get_group_expenses as _get_group_expenses,
    get_group_payments,
    get_user_groups,
    get_user_payments as _get_user_payments,
    require_group,
)


@dataclass(frozen=True)
class BalanceDetail:
    """What one counterparty and *user_id* owe each other.

    ``balance > 0`` means the counterparty owes the user.
    """

    user_id: str
    balance: Decimal
    source: Literal["friend", "group"]
    group_ids: tuple[uuid.UUID, ...] = ()


@dataclass(frozen=True)
class BalanceSummary:
    total_owed: Decimal
    total_owing: Decimal
    net_balance: Decimal
    details: list[BalanceDetail] = field(default_factory=list)


async def get_group_expenses(
    session: AsyncSession,
    group_id: uuid.UUID,
    limit: int | None = None,
) -> list[Expense]:
    """Return a group's expenses, newest first.

    Raises:
        GroupNotFound: If the group does not exist.
    """
    await require_group(session, group_id)
    return await _get_group_expenses(session, group_id, limit)


async def get_user_payments(
    session: AsyncSession,
    user_id: str,
    limit: int = 20,
) -> list[Payment]:
    """Return payments sent or received by *user_id*, newest first."""
    return await _get_user_payments(session, user_id, limit)


async def pairwise_group_balances(
    session: AsyncSession,
    group_id: uuid.UUID,
    user_id: str,
) -> dict[str, Decimal]:
    """Replay a group's history into ``other_user -> balance`` for *user_id*.

    Positive means the other member owes *user_id* within this group.
    """
    balances: dict[str, Decimal] = {}

    effects = [effects_of(e) for e in await _get_group_expenses(session, group_id)]
    effects += [
        payment_effects(p.from_user_id, p.to_user_id, p.amount)
        for p in await get_group_payments(session, group_id)
    ]
    for effect in effects:
        for (low, high), delta in effect.friends.items():
            if user_id not in (low, high):
                continue
            other = high if low == user_id else low
            _, sign = friend_pair(user_id, other)
            balances[other] = balances.get(other, ZERO) + sign * delta
    return balances


async def get_balance_summary(session: AsyncSession, user_id: str) -> BalanceSummary:
    """Summarise everything *user_id* is owed and owes.

    Friends contribute their stored mirror balance.  Group members who are
    not friends contribute the sum of their pairwise balances across all
    of the user's groups.  Balances within the configured tolerance of
    zero are left out.
    """
    tolerance = settings.balance_tolerance
    details: list[BalanceDetail] = []
    friend_ids: set[str] = set()

    for friendship in await get_friendships(session, user_id):
        friend_ids.add(friendship.other_user_id)
        if abs(friendship.balance) > tolerance:
            details.append(
                BalanceDetail(
                    user_id=friendship.other_user_id,
                    balance=friendship.balance,
                    source="friend",
                )
            )

    group_totals: dict[str, Decimal] = {}
    group_refs: dict[str, list[uuid.UUID]] = {}
    for group in await get_user_groups(session, user_id):
        pairwise = await pairwise_group_balances(session, group.id, user_id)
        for other, balance in pairwise.items():
            if other in friend_ids or abs(balance) <= tolerance:
                continue
            group_totals[other] = group_totals.get(other, ZERO) + balance
            group_refs.setdefault(other, []).append(group.id)

    for other, balance in group_totals.items():
        if abs(balance) > tolerance:
            details.append(
                BalanceDetail(
                    user_id=other,
                    balance=balance,
                    source="group",
                    group_ids=tuple(group_refs[other]),
                )
            )

    total_owed = sum((d.balance for d in details if d.balance > 0), ZERO)
    total_owing = sum((-d.balance for d in details if d.balance < 0), ZERO)
    details.sort(key=lambda d: abs(d.balance), reverse=True)
    return BalanceSummary(
        total_owed=total_owed,
        total_owing=total_owing,
        net_balance=total_owed - total_owing,
        details=details,
    )
