"""Expense lifecycle: add, update and delete shared expenses.

Every operation runs inside the caller's session and either completes as
a whole or raises.  Balance movements go through
:func:`~splitledger.ledger.balance.apply_effects`; an update applies only
the difference between the old and new effects, so an edit that changes
nothing moves nothing.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.formatters import format_money
from splitledger.ledger.balance import BalanceEffects, apply_effects, expense_effects
from splitledger.ledger.errors import ValidationFailed
from splitledger.ledger.models import Expense, ExpenseSplit, Group, MessageType, SplitType
from splitledger.ledger.repository import (
    flush_or_conflict,
    require_expense,
    require_group,
    save_expense,
)
from splitledger.ledger.splits import SplitInput, build_splits, to_money
from splitledger.ledger.validation import hard_errors, validate_expense
from splitledger.notify.channels import LedgerResult, SideChannels, SideEffectFailure
from splitledger.notify.notices import ChatPost, ExpenseAddedNotice

logger = logging.getLogger(__name__)


class ExpenseDraft(BaseModel):
    """Caller-supplied expense data for an add or an update.

    Either give explicit ``splits``, or leave them empty and let the draft
    derive them: an equal split over ``participants`` (all active members
    when omitted) or a percentage split over ``percentages``.
    """

    group_id: uuid.UUID
    description: str = Field(..., min_length=1)
    amount: Decimal
    paid_by: str = Field(..., min_length=1)
    split_type: SplitType = SplitType.EQUAL
    splits: list[SplitInput] = Field(default_factory=list)
    participants: list[str] | None = None
    percentages: dict[str, Decimal] | None = None
    currency: str | None = None
    category: str | None = None
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else None

    def resolve_splits(self, group: Group) -> list[SplitInput]:
        """Return the per-participant shares for this draft."""
        if self.splits:
            return list(self.splits)
        if self.split_type is SplitType.EQUAL:
            user_ids = self.participants
            if user_ids is None:
                user_ids = [m.user_id for m in group.members if m.is_active]
            return build_splits(SplitType.EQUAL, self.amount, user_ids=user_ids)
        return build_splits(self.split_type, self.amount, percentages=self.percentages)


def effects_of(expense: Expense) -> BalanceEffects:
    """Balance effects currently attributable to a stored *expense*."""
    return expense_effects(expense.paid_by, [(s.user_id, s.amount) for s in expense.splits])


def _validated_splits(group: Group, draft: ExpenseDraft) -> list[SplitInput]:
    splits = draft.resolve_splits(group)
    errors = hard_errors(
        validate_expense(group, draft.amount, draft.paid_by, draft.split_type, splits)
    )
    if errors:
        raise ValidationFailed(errors)
    return splits


def refresh_settled(expense: Expense) -> bool:
    """Recompute ``is_settled``: every non-payer split has been paid."""
    expense.is_settled = all(s.is_paid for s in expense.splits if s.user_id != expense.paid_by)
    return expense.is_settled


# ── Add ───────────────────────────────────────────────────────────────────────


async def add_expense(
    session: AsyncSession,
    draft: ExpenseDraft,
    *,
    channels: SideChannels,
) -> LedgerResult[uuid.UUID]:
    """Record a new expense and move every participant's balance.

    Raises:
        GroupNotFound: If the draft's group does not exist.
        ValidationFailed: If the amount or splits are inconsistent.

    Returns:
        A :class:`LedgerResult` holding the new expense ID.
    """
    group = await require_group(session, draft.group_id)
    splits = _validated_splits(group, draft)
    failures: list[SideEffectFailure] = []

    expense = await save_expense(
        session,
        group_id=group.id,
        description=draft.description,
        amount=draft.amount,
        currency=draft.currency or group.currency,
        paid_by=draft.paid_by,
        split_type=draft.split_type,
        splits=[(s.user_id, s.amount, s.percentage) for s in splits],
        category=draft.category,
        notes=draft.notes,
    )
    refresh_settled(expense)
    group.total_expenses = group.total_expenses + expense.amount

    await apply_effects(
        session, group.id, effects_of(expense), channels=channels, failures=failures
    )
    await flush_or_conflict(session)

    money = format_money(expense.amount, expense.currency)
    await channels.post_chat(
        session,
        failures,
        ChatPost(
            group_id=group.id,
            user_id=expense.paid_by,
            type=MessageType.EXPENSE,
            expense_id=expense.id,
            text=f'{expense.paid_by} added "{expense.description}" ({money})',
        ),
    )
    for split in expense.splits:
        if split.user_id == expense.paid_by:
            continue
        await channels.notify(
            session,
            failures,
            ExpenseAddedNotice(
                user_id=split.user_id,
                expense_id=expense.id,
                group_id=group.id,
                paid_by=expense.paid_by,
                description=expense.description,
                amount=split.amount,
                currency=expense.currency,
            ),
        )

    logger.info(
        "Expense %s added to group %s: %s paid %s",
        expense.id, group.id, expense.paid_by, money,
    )
    return LedgerResult(expense.id, failures)


# ── Update ────────────────────────────────────────────────────────────────────


def _replace_splits(expense: Expense, paid_by: str, splits: Sequence[SplitInput]) -> None:
    """Rewrite *expense*'s split rows in place.

    Rows are matched by user so a participant keeps the same row.  A split
    stays paid only while both its payer and its amount are unchanged.
    """
    existing = {s.user_id: s for s in expense.splits}
    payer_changed = paid_by != expense.paid_by
    rows: list[ExpenseSplit] = []

    for position, split in enumerate(splits):
        row = existing.get(split.user_id)
        if row is None:
            row = ExpenseSplit(user_id=split.user_id, is_paid=False)
        elif payer_changed or row.amount != split.amount:
            row.is_paid = False
            row.paid_at = None
        row.amount = split.amount
        row.percentage = split.percentage
        row.position = position
        if split.user_id == paid_by:
            row.is_paid = True
        rows.append(row)

    expense.splits = rows


async def update_expense(
    session: AsyncSession,
    expense_id: uuid.UUID,
    draft: ExpenseDraft,
    *,
    channels: SideChannels,
    actor_id: str | None = None,
) -> LedgerResult[BalanceEffects]:
    """Amend an expense and apply only the balance difference.

    Raises:
        ExpenseNotFound: If the expense does not exist.
        ValidationFailed: If the new data is inconsistent or tries to move
            the expense to another group.

    Returns:
        A :class:`LedgerResult` holding the effects that were applied
        (empty for a no-op edit).
    """
    expense = await require_expense(session, expense_id)
    if draft.group_id != expense.group_id:
        raise ValidationFailed(["An expense cannot be moved to another group."])

    group = await require_group(session, expense.group_id)
    splits = _validated_splits(group, draft)
    failures: list[SideEffectFailure] = []

    old_effects = effects_of(expense)
    new_effects = expense_effects(draft.paid_by, [(s.user_id, s.amount) for s in splits])
    delta = new_effects - old_effects
    amount_difference = draft.amount - expense.amount

    _replace_splits(expense, draft.paid_by, splits)
    expense.description = draft.description
    expense.amount = draft.amount
    expense.paid_by = draft.paid_by
    expense.split_type = draft.split_type
    expense.currency = draft.currency or expense.currency
    expense.category = draft.category
    expense.notes = draft.notes
    refresh_settled(expense)

    if amount_difference:
        group.total_expenses = group.total_expenses + amount_difference
    if not delta.is_empty():
        await apply_effects(session, group.id, delta, channels=channels, failures=failures)
    await flush_or_conflict(session)

    actor = actor_id or expense.paid_by
    await channels.post_chat(
        session,
        failures,
        ChatPost(
            group_id=group.id,
            expense_id=expense.id,
            text=f'{actor} updated "{expense.description}" '
                 f"({format_money(expense.amount, expense.currency)})",
        ),
    )

    logger.info(
        "Expense %s updated by %s: amount changed by %s, %d balance change(s)",
        expense.id, actor, amount_difference, len(delta.members) + len(delta.friends),
    )
    return LedgerResult(delta, failures)


# ── Delete ────────────────────────────────────────────────────────────────────


async def delete_expense(
    session: AsyncSession,
    expense_id: uuid.UUID,
    actor_id: str,
    *,
    channels: SideChannels,
) -> LedgerResult[None]:
    """Delete an expense and reverse all of its balance effects.

    Payments already recorded against the expense stay in the audit trail
    and keep their own balance effect.

    Raises:
        ExpenseNotFound: If the expense does not exist.
    """
    expense = await require_expense(session, expense_id)
    group = await require_group(session, expense.group_id)
    failures: list[SideEffectFailure] = []

    reversal = -effects_of(expense)
    group.total_expenses = group.total_expenses - expense.amount
    await apply_effects(session, group.id, reversal, channels=channels, failures=failures)

    description = expense.description
    await session.delete(expense)
    await flush_or_conflict(session)

    await channels.post_chat(
        session,
        failures,
        ChatPost(
            group_id=group.id,
            expense_id=expense_id,
            text=f'{actor_id} deleted "{description}"',
        ),
    )

    logger.info("Expense %s deleted from group %s by %s", expense_id, group.id, actor_id)
    return LedgerResult(None, failures)
