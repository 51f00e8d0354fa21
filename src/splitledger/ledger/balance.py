"""Balance store and balance effects.

Two layers live here:

- **Effects** (pure): :func:`expense_effects` turns an expense's payer and
  splits into the signed per-member and per-friend-pair deltas it causes.
  Effects subtract, so an edit applies ``new - old`` and a deletion applies
  ``-old``; a no-op edit yields an empty effect set and touches nothing.
- **Store** (I/O): :func:`adjust_friend_balance` and
  :func:`adjust_group_member_balance` apply one delta to the stored
  balances.

Sign convention: positive means "is owed".  A payer of an expense gains
``+share`` for every other participant's share and the participant loses
``-share``; ``friend(A, B).balance > 0`` means B owes A.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.ledger.errors import MemberNotFound
from splitledger.ledger.models import Friendship, FriendshipStatus, Group, GroupMember
from splitledger.ledger.repository import flush_or_conflict, require_group
from splitledger.notify.channels import SideChannel, SideChannels, SideEffectFailure

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# An unordered friend pair, stored sorted so (a, b) and (b, a) collapse.
FriendPair = tuple[str, str]


# ── Effects (pure) ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BalanceEffects:
    """Signed balance deltas caused by one expense or payment.

    Attributes:
        members: ``user_id -> delta`` for group-member balances.  Always sums
            to zero.
        friends: ``(low, high) -> delta`` where ``low < high``; a positive
            delta means ``high`` owes ``low`` more (``friend(low, high)``
            grows, ``friend(high, low)`` shrinks by the same amount).
    """

    members: dict[str, Decimal] = field(default_factory=dict)
    friends: dict[FriendPair, Decimal] = field(default_factory=dict)

    def __neg__(self) -> BalanceEffects:
        return BalanceEffects(
            members={k: -v for k, v in self.members.items()},
            friends={k: -v for k, v in self.friends.items()},
        )

    def __sub__(self, other: BalanceEffects) -> BalanceEffects:
        return BalanceEffects(
            members=_diff(self.members, other.members),
            friends=_diff(self.friends, other.friends),
        )

    def __add__(self, other: BalanceEffects) -> BalanceEffects:
        return self - (-other)

    def is_empty(self) -> bool:
        return not self.members and not self.friends


def _diff(new: Mapping, old: Mapping) -> dict:
    """``new - old`` keyed union, dropping zero entries."""
    result = {}
    for key in list(new) + [k for k in old if k not in new]:
        delta = new.get(key, ZERO) - old.get(key, ZERO)
        if delta != 0:
            result[key] = delta
    return result


def friend_pair(creditor: str, debtor: str) -> tuple[FriendPair, int]:
    """Return the sorted pair for two users and the sign of *creditor*'s side.

    ``sign`` is ``+1`` when *creditor* is the pair's first element.
    """
    if creditor < debtor:
        return (creditor, debtor), 1
    return (debtor, creditor), -1


def expense_effects(
    paid_by: str,
    splits: Iterable[tuple[str, Decimal]],
) -> BalanceEffects:
    """Compute the balance effects of *paid_by* covering *splits*.

    Args:
        paid_by: User ID of the payer.
        splits: ``(user_id, amount)`` shares.  The payer's own share moves
            nothing.

    Returns:
        The :class:`BalanceEffects` of the expense.
    """
    members: dict[str, Decimal] = {}
    friends: dict[FriendPair, Decimal] = {}

    for user_id, amount in splits:
        if user_id == paid_by or amount == 0:
            continue
        members[user_id] = members.get(user_id, ZERO) - amount
        members[paid_by] = members.get(paid_by, ZERO) + amount

        pair, sign = friend_pair(paid_by, user_id)
        friends[pair] = friends.get(pair, ZERO) + sign * amount

    return BalanceEffects(
        members={k: v for k, v in members.items() if v != 0},
        friends={k: v for k, v in friends.items() if v != 0},
    )


def payment_effects(payer: str, payee: str, amount: Decimal) -> BalanceEffects:
    """Compute the balance effects of *payer* handing *amount* to *payee*.

    Paying someone is the mirror image of them owing you: the payer's
    balance rises and the payee's falls, exactly as if the payer had
    covered an expense of *amount* for the payee.
    """
    return expense_effects(payer, [(payee, amount)])


# ── Store (I/O) ───────────────────────────────────────────────────────────────


async def adjust_friend_balance(
    session: AsyncSession,
    user_id: str,
    friend_id: str,
    delta: Decimal,
) -> int:
    """Move ``friend(user_id, friend_id)`` by *delta* and its mirror by ``-delta``.

    Only accepted friendships are touched.  A missing mirror is skipped,
    so callers must check the returned count to know whether the pair is
    still inverse.

    Returns:
        The number of mirror records updated (0, 1 or 2).
    """
    stmt = select(Friendship).where(
        Friendship.status == FriendshipStatus.ACCEPTED,
        or_(
            and_(Friendship.owner_user_id == user_id, Friendship.other_user_id == friend_id),
            and_(Friendship.owner_user_id == friend_id, Friendship.other_user_id == user_id),
        ),
    )
    result = await session.execute(stmt)
    mirrors = list(result.scalars().all())

    now = datetime.now(timezone.utc)
    for mirror in mirrors:
        signed = delta if mirror.owner_user_id == user_id else -delta
        mirror.balance = mirror.balance + signed
        mirror.last_activity = now

    if mirrors:
        await flush_or_conflict(session)
    logger.debug(
        "Friend balance %s→%s moved by %s (%d mirror(s))",
        user_id, friend_id, delta, len(mirrors),
    )
    return len(mirrors)


async def adjust_group_member_balances(
    session: AsyncSession,
    group_id: uuid.UUID,
    deltas: Mapping[str, Decimal],
) -> Group:
    """Apply several member deltas to one group in a single write.

    Every member must exist before anything is changed, so a bad user ID
    leaves all balances untouched.

    Raises:
        GroupNotFound: If the group does not exist.
        MemberNotFound: If any user in *deltas* is not a member.
        ConcurrentWriteLost: If a member row changed since it was read.
    """
    group = await require_group(session, group_id)
    members: dict[str, GroupMember] = {}
    for user_id in deltas:
        member = group.member(user_id)
        if member is None:
            raise MemberNotFound(group_id, user_id)
        members[user_id] = member

    for user_id, delta in deltas.items():
        members[user_id].balance = members[user_id].balance + delta

    await flush_or_conflict(session)
    return group


async def adjust_group_member_balance(
    session: AsyncSession,
    group_id: uuid.UUID,
    user_id: str,
    delta: Decimal,
) -> GroupMember:
    """Move one member's balance by *delta*.

    Unlike the friend store this is structural: an unknown group or member
    raises and aborts the caller's transaction.
    """
    group = await adjust_group_member_balances(session, group_id, {user_id: delta})
    member = group.member(user_id)
    if member is None:
        raise MemberNotFound(group_id, user_id)
    return member


async def apply_effects(
    session: AsyncSession,
    group_id: uuid.UUID | None,
    effects: BalanceEffects,
    *,
    channels: SideChannels,
    failures: list[SideEffectFailure],
) -> None:
    """Write *effects* to the balance store.

    Group-member deltas are structural and raise on a missing member.
    Friend-pair deltas are best-effort: a pair that is not (or no longer)
    an accepted friendship is recorded as a ``friend_balance`` failure
    through *channels*.

    Args:
        group_id: Group whose member balances move, or ``None`` for a
            payment made outside any group.
    """
    if group_id is not None and effects.members:
        await adjust_group_member_balances(session, group_id, effects.members)

    for (low, high), delta in effects.friends.items():
        touched = await adjust_friend_balance(session, low, high, delta)
        if touched < 2:
            channels.record(
                failures,
                SideChannel.FRIEND_BALANCE,
                f"{low} and {high} are not friends; friend balance left unchanged",
            )
