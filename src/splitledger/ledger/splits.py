"""Split arithmetic for shared expenses.

Turns an expense total into per-participant shares for the three split
types (equal, percentage, custom).  All amounts are :class:`~decimal.Decimal`
quantized to cents; rounding remainders are assigned so that the shares
always sum exactly to the total.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field, field_validator

from splitledger.ledger.errors import ValidationFailed
from splitledger.ledger.models import SplitType

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Coerce *value* to a cent-quantized :class:`Decimal`.

    Floats go through ``str`` first so ``0.1`` becomes ``Decimal("0.10")``
    rather than its binary expansion.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _positive_total(amount: Decimal) -> Decimal:
    total = to_money(amount)
    if total <= 0:
        raise ValidationFailed(["Expense amount must be a positive number."])
    return total


class SplitInput(BaseModel):
    """One participant's share as supplied by the caller."""

    user_id: str = Field(..., min_length=1)
    amount: Decimal
    percentage: Decimal | None = None

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)


def split_equally(amount: Decimal, user_ids: Sequence[str]) -> list[SplitInput]:
    """Split *amount* into equal shares.

    Leftover cents are handed out one at a time to the first participants,
    so ``split_equally(100, [a, b, c])`` yields 33.34 / 33.33 / 33.33.
    """
    total = _positive_total(amount)
    if not user_ids:
        raise ValidationFailed(["An equal split needs at least one participant."])
    count = len(user_ids)
    base = (total / count).quantize(CENT, rounding=ROUND_DOWN)
    remainder_cents = int((total - base * count) / CENT)

    splits: list[SplitInput] = []
    for index, user_id in enumerate(user_ids):
        share = base + (CENT if index < remainder_cents else Decimal("0"))
        splits.append(
            SplitInput(
                user_id=user_id,
                amount=share,
                percentage=(HUNDRED / count).quantize(CENT, rounding=ROUND_HALF_UP),
            )
        )
    return splits


def split_by_percentage(
    amount: Decimal,
    percentages: Mapping[str, Decimal],
) -> list[SplitInput]:
    """Split *amount* according to *percentages* (user_id → percent).

    Percentages must sum to 100.  The last participant absorbs the rounding
    difference.
    """
    total = _positive_total(amount)
    if not percentages:
        raise ValidationFailed(["A percentage split needs at least one participant."])
    pct_total = sum((Decimal(p) for p in percentages.values()), Decimal("0"))
    if abs(pct_total - HUNDRED) > CENT:
        raise ValidationFailed([f"Split percentages must sum to 100 (got {pct_total})."])

    splits: list[SplitInput] = []
    allocated = Decimal("0")
    items = list(percentages.items())
    for index, (user_id, pct) in enumerate(items):
        pct = Decimal(pct)
        if index == len(items) - 1:
            share = total - allocated
        else:
            share = to_money(total * pct / HUNDRED)
        allocated += share
        splits.append(SplitInput(user_id=user_id, amount=share, percentage=pct))
    return splits


def split_custom(amount: Decimal, amounts: Mapping[str, Decimal]) -> list[SplitInput]:
    """Use caller-chosen *amounts* as-is after checking they add up."""
    total = _positive_total(amount)
    splits = [SplitInput(user_id=u, amount=a) for u, a in amounts.items()]
    split_total = sum((s.amount for s in splits), Decimal("0"))
    if split_total != total:
        raise ValidationFailed(
            [f"Custom split amounts ({split_total}) must equal the expense amount ({total})."]
        )
    for s in splits:
        s.percentage = (s.amount / total * HUNDRED).quantize(CENT)
    return splits


def build_splits(
    split_type: SplitType | str,
    amount: Decimal,
    *,
    user_ids: Sequence[str] | None = None,
    percentages: Mapping[str, Decimal] | None = None,
    amounts: Mapping[str, Decimal] | None = None,
) -> list[SplitInput]:
    """Dispatch to the splitter for *split_type*."""
    split_type = SplitType(split_type)
    if split_type is SplitType.EQUAL:
        return split_equally(amount, list(user_ids or []))
    if split_type is SplitType.PERCENTAGE:
        return split_by_percentage(amount, percentages or {})
    return split_custom(amount, amounts or {})
