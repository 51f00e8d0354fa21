"""Settlement operations.

Money changes hands only through :class:`~splitledger.ledger.models.Payment`
records:

- :func:`mark_payment_as_paid` records a payment and moves the friend
  balance (and the group balances when a group is given).
- :func:`update_expense_settlement` marks splits of an expense paid by
  recording one payment per newly-paid split through the same path.
- :func:`settle_all_balances_between_friends` pays off a friend pair.
- :func:`get_group_settlement_suggestions` proposes payments that would
  zero a group's balances.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.config import settings
from splitledger.formatters import format_money
from splitledger.ledger.balance import apply_effects, payment_effects
from splitledger.ledger.errors import FriendshipNotFound, NoOutstandingBalance, ValidationFailed
from splitledger.ledger.expenses import refresh_settled
from splitledger.ledger.models import Expense, FriendshipStatus, Payment, PaymentMethod
from splitledger.ledger.repository import (
    flush_or_conflict,
    get_expense_paid_total,
    get_friendship,
    require_expense,
    require_group,
    save_payment,
)
from splitledger.ledger.splits import to_money
from splitledger.ledger.validation import WARNING_PREFIX, hard_errors, validate_payment
from splitledger.notify.channels import LedgerResult, SideChannels, SideEffectFailure
from splitledger.notify.notices import ChatPost, PaymentReceivedNotice, PaymentSentNotice

logger = logging.getLogger(__name__)


# ── Payments ──────────────────────────────────────────────────────────────────


async def mark_payment_as_paid(
    session: AsyncSession,
    payer_id: str,
    payee_id: str,
    amount: Decimal,
    *,
    channels: SideChannels,
    group_id: uuid.UUID | None = None,
    expense_id: uuid.UUID | None = None,
    description: str | None = None,
    method: PaymentMethod = PaymentMethod.MANUAL_SETTLEMENT,
) -> LedgerResult[Payment]:
    """Record that *payer_id* paid *payee_id* and move their balances.

    ``friend(payee, payer)`` drops by *amount*.  With a *group_id* the
    payer's member balance rises by *amount* and the payee's falls by the
    same, so the group stays balanced.

    Raises:
        ValidationFailed: If the amount is not positive or both users are
            the same.
        GroupNotFound: If *group_id* does not exist.
        MemberNotFound: If either user is not a member of that group.

    Returns:
        A :class:`LedgerResult` holding the new :class:`Payment`.
    """
    amount = to_money(amount)
    mirror = await get_friendship(session, payee_id, payer_id)
    current_balance = (
        mirror.balance
        if mirror is not None and mirror.status == FriendshipStatus.ACCEPTED
        else None
    )
    errors = validate_payment(amount, payer_id, payee_id, current_balance)
    blocking = hard_errors(errors)
    if blocking:
        raise ValidationFailed(blocking)
    for warning in errors:
        if warning.startswith(WARNING_PREFIX):
            logger.info("Payment %s→%s: %s", payer_id, payee_id, warning)

    currency = settings.default_currency
    if group_id is not None:
        group = await require_group(session, group_id)
        currency = group.currency

    failures: list[SideEffectFailure] = []
    payment = await save_payment(
        session,
        from_user_id=payer_id,
        to_user_id=payee_id,
        amount=amount,
        currency=currency,
        method=method,
        group_id=group_id,
        expense_id=expense_id,
        description=description,
    )
    await apply_effects(
        session,
        group_id,
        payment_effects(payer_id, payee_id, amount),
        channels=channels,
        failures=failures,
    )
    await flush_or_conflict(session)

    money = format_money(amount, currency)
    if group_id is not None:
        await channels.post_chat(
            session,
            failures,
            ChatPost(
                group_id=group_id,
                expense_id=expense_id,
                text=f"{payer_id} paid {payee_id} {money}",
            ),
        )
    await channels.notify(
        session,
        failures,
        PaymentReceivedNotice(
            user_id=payee_id,
            payment_id=payment.id,
            from_user_id=payer_id,
            amount=amount,
            currency=currency,
            group_id=group_id,
            expense_id=expense_id,
        ),
    )
    await channels.notify(
        session,
        failures,
        PaymentSentNotice(
            user_id=payer_id,
            payment_id=payment.id,
            to_user_id=payee_id,
            amount=amount,
            currency=currency,
            group_id=group_id,
            expense_id=expense_id,
        ),
    )

    logger.info("Payment %s: %s paid %s %s", payment.id, payer_id, payee_id, money)
    return LedgerResult(payment, failures)


# ── Expense settlement ────────────────────────────────────────────────────────


async def update_expense_settlement(
    session: AsyncSession,
    expense_id: uuid.UUID,
    paid: Mapping[str, bool],
    *,
    channels: SideChannels,
    method: PaymentMethod = PaymentMethod.MANUAL_SETTLEMENT,
) -> LedgerResult[Expense]:
    """Mark splits of an expense paid.

    Each split that flips from unpaid to paid records a payment from the
    participant to the expense's payer, which moves the balances exactly
    like :func:`mark_payment_as_paid`.  The payment covers only what is
    still owed on the share: earlier payments against this expense (made
    before an edit changed the share) are deducted, and nothing is recorded
    when they already cover it.  Splits already paid are left alone.

    Args:
        paid: ``user_id -> is_paid`` for the splits to change.

    Raises:
        ExpenseNotFound: If the expense does not exist.
        ValidationFailed: If a user has no split on the expense or a paid
            split is being marked unpaid.
    """
    expense = await require_expense(session, expense_id)

    errors: list[str] = []
    newly_paid = []
    for user_id, is_paid in paid.items():
        split = expense.split_for(user_id)
        if split is None:
            errors.append(f"User {user_id} has no share in this expense.")
        elif user_id == expense.paid_by:
            continue
        elif split.is_paid and not is_paid:
            errors.append(
                f"The share of {user_id} is already paid and cannot be marked unpaid."
            )
        elif is_paid and not split.is_paid:
            newly_paid.append(split)
    if errors:
        raise ValidationFailed(errors)

    failures: list[SideEffectFailure] = []
    was_settled = expense.is_settled
    now = datetime.now(timezone.utc)
    for split in newly_paid:
        # Payments made before an edit changed the share still count.
        already_paid = await get_expense_paid_total(
            session, expense.id, split.user_id, expense.paid_by
        )
        remainder = to_money(split.amount - already_paid)
        if remainder > 0:
            result = await mark_payment_as_paid(
                session,
                split.user_id,
                expense.paid_by,
                remainder,
                channels=channels,
                group_id=expense.group_id,
                expense_id=expense.id,
                description=f"Share of {expense.description}",
                method=method,
            )
            failures.extend(result.failures)
        split.is_paid = True
        split.paid_at = now

    if newly_paid:
        expense.last_settlement_at = now
        refresh_settled(expense)
        await flush_or_conflict(session)

    if expense.is_settled and not was_settled:
        await channels.post_chat(
            session,
            failures,
            ChatPost(
                group_id=expense.group_id,
                expense_id=expense.id,
                text=f'"{expense.description}" is fully settled',
            ),
        )

    logger.info(
        "Expense %s: %d share(s) marked paid, settled=%s",
        expense.id, len(newly_paid), expense.is_settled,
    )
    return LedgerResult(expense, failures)


async def settle_all_balances_between_friends(
    session: AsyncSession,
    user_id: str,
    friend_id: str,
    *,
    channels: SideChannels,
    group_id: uuid.UUID | None = None,
) -> LedgerResult[Payment]:
    """Pay off the whole balance between two friends.

    Whoever owes pays the other ``abs(balance)``.

    Raises:
        FriendshipNotFound: If the two are not accepted friends.
        NoOutstandingBalance: If the balance is exactly zero.
    """
    friendship = await get_friendship(session, user_id, friend_id)
    if friendship is None or friendship.status != FriendshipStatus.ACCEPTED:
        raise FriendshipNotFound(user_id, friend_id)

    balance = friendship.balance
    if balance == 0:
        raise NoOutstandingBalance(user_id, friend_id)

    if balance > 0:
        payer_id, payee_id = friend_id, user_id
    else:
        payer_id, payee_id = user_id, friend_id

    return await mark_payment_as_paid(
        session,
        payer_id,
        payee_id,
        abs(balance),
        channels=channels,
        group_id=group_id,
        description="Settled all balances",
    )


# ── Suggestions ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SettlementSuggestion:
    """A proposed payment from a member who owes to one who is owed."""

    from_user_id: str
    to_user_id: str
    amount: Decimal


def suggest_settlements(
    balances: Iterable[tuple[str, Decimal]],
    limit: int | None = None,
    tolerance: Decimal | None = None,
) -> list[SettlementSuggestion]:
    """Greedily pair debtors with creditors.

    Members are taken in the order given; balances within *tolerance* of
    zero are ignored.  The result is sorted by amount, largest first, and
    cut to *limit*.  This is a heuristic and does not minimise the number
    of payments.
    """
    limit = settings.settlement_suggestion_limit if limit is None else limit
    tolerance = settings.balance_tolerance if tolerance is None else tolerance

    balances = list(balances)
    creditors = [[user_id, b] for user_id, b in balances if b > tolerance]
    debtors = [[user_id, -b] for user_id, b in balances if b < -tolerance]

    suggestions: list[SettlementSuggestion] = []
    ci = di = 0
    while ci < len(creditors) and di < len(debtors):
        creditor, debtor = creditors[ci], debtors[di]
        amount = min(creditor[1], debtor[1])
        if amount > tolerance:
            suggestions.append(
                SettlementSuggestion(from_user_id=debtor[0], to_user_id=creditor[0], amount=amount)
            )
        creditor[1] -= amount
        debtor[1] -= amount
        if creditor[1] <= tolerance:
            ci += 1
        if debtor[1] <= tolerance:
            di += 1

    suggestions.sort(key=lambda s: s.amount, reverse=True)
    return suggestions[:limit]


async def get_group_settlement_suggestions(
    session: AsyncSession,
    group_id: uuid.UUID,
    limit: int | None = None,
) -> list[SettlementSuggestion]:
    """Suggest payments that would settle *group_id*'s member balances.

    Read-only.

    Raises:
        GroupNotFound: If the group does not exist.
    """
    group = await require_group(session, group_id)
    balances = [(m.user_id, m.balance) for m in group.members if m.is_active]
    return suggest_settlements(balances, limit)
