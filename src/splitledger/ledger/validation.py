"""Expense and payment validation rules.

Provides :func:`validate_expense` and :func:`validate_payment`, which check
a proposed write before it reaches the ledger.

Validation errors are returned as a list of human-readable strings.
An empty list means the input is valid.  Use :func:`hard_errors` to drop
soft warnings before deciding whether to raise
:class:`~splitledger.ledger.errors.ValidationFailed`.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from splitledger.ledger.models import Group, SplitType
from splitledger.ledger.splits import HUNDRED, SplitInput

WARNING_PREFIX = "WARNING:"
SUM_TOLERANCE = Decimal("0.01")


def hard_errors(errors: Sequence[str]) -> list[str]:
    """Return only the blocking errors from *errors*."""
    return [e for e in errors if not e.startswith(WARNING_PREFIX)]


def validate_expense(
    group: Group,
    amount: Decimal,
    paid_by: str,
    split_type: SplitType | str,
    splits: Sequence[SplitInput],
) -> list[str]:
    """Validate a proposed expense against its group.

    Args:
        group: The group the expense belongs to (members loaded).
        amount: The expense total.
        paid_by: User ID of the payer.
        split_type: How the total was divided.
        splits: Per-participant shares.

    Returns:
        A list of validation error strings.  Empty means valid.
    """
    errors: list[str] = []

    if not group.is_active:
        errors.append("The group is no longer active.")

    if amount <= 0:
        errors.append("Expense amount must be a positive number.")

    if not splits:
        errors.append("An expense needs at least one participant.")

    active = {m.user_id for m in group.members if m.is_active}
    if paid_by not in active:
        errors.append(f"Payer ({paid_by}) is not an active member of the group.")

    seen: set[str] = set()
    for split in splits:
        if split.user_id in seen:
            errors.append(f"User {split.user_id} appears more than once in the split.")
        seen.add(split.user_id)
        if split.user_id not in active:
            errors.append(f"User {split.user_id} is not an active member of the group.")
        if split.amount < 0:
            errors.append(f"Split amount for {split.user_id} cannot be negative.")

    if splits:
        split_total = sum((s.amount for s in splits), Decimal("0"))
        if abs(split_total - amount) > SUM_TOLERANCE:
            errors.append(
                f"Split amounts ({split_total}) must equal the expense amount ({amount})."
            )

        if SplitType(split_type) is SplitType.PERCENTAGE:
            pct_total = sum((s.percentage or Decimal("0") for s in splits), Decimal("0"))
            if abs(pct_total - HUNDRED) > SUM_TOLERANCE:
                errors.append(f"Split percentages must sum to 100 (got {pct_total}).")

    return errors


def validate_payment(
    amount: Decimal,
    payer_id: str,
    payee_id: str,
    current_balance: Decimal | None = None,
) -> list[str]:
    """Validate a proposed payment from *payer_id* to *payee_id*.

    Args:
        amount: The payment amount (must be positive).
        payer_id: User handing over the money.
        payee_id: User receiving it.
        current_balance: ``friend(payee, payer).balance`` if the two are
            friends (positive = payer owes payee).  If provided, an
            overpayment warning is emitted but the payment is still allowed.

    Returns:
        A list of validation error/warning strings.  Empty means valid.
        Strings starting with ``"WARNING:"`` are soft warnings.
    """
    errors: list[str] = []

    if amount <= 0:
        errors.append("Payment amount must be a positive number.")

    if payer_id == payee_id:
        errors.append("Payer and payee must be different users.")

    if current_balance is not None and amount > 0:
        debt = current_balance if current_balance > 0 else Decimal("0")
        if debt == 0:
            errors.append(
                f"{WARNING_PREFIX} The payer does not currently owe anything. "
                f"This payment of {amount} will create a credit."
            )
        elif amount > debt:
            errors.append(
                f"{WARNING_PREFIX} Payment amount ({amount}) exceeds the "
                f"outstanding balance ({debt}). The difference will "
                f"become a credit."
            )

    return errors
