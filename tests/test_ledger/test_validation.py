"""Tests for expense and payment validation rules."""

from __future__ import annotations

from decimal import Decimal

from splitledger.ledger.models import Group, GroupMember
from splitledger.ledger.splits import SplitInput
from splitledger.ledger.validation import hard_errors, validate_expense, validate_payment

USER_A = "alice"
USER_B = "bob"
USER_C = "carol"


def _group(*user_ids: str, inactive: tuple[str, ...] = (), active: bool = True) -> Group:
    members = [GroupMember(user_id=u, is_active=True) for u in user_ids]
    members += [GroupMember(user_id=u, is_active=False) for u in inactive]
    return Group(name="Trip", created_by=user_ids[0], is_active=active, members=members)


def _split(user_id: str, amount: str, percentage: str | None = None) -> SplitInput:
    return SplitInput(
        user_id=user_id,
        amount=Decimal(amount),
        percentage=Decimal(percentage) if percentage is not None else None,
    )


class TestValidateExpense:
    """Tests for the validate_expense function."""

    def test_valid_equal_split(self) -> None:
        """An even three-way split of 90 passes."""
        errors = validate_expense(
            _group(USER_A, USER_B, USER_C),
            Decimal("90"),
            USER_A,
            "equal",
            [_split(USER_A, "30"), _split(USER_B, "30"), _split(USER_C, "30")],
        )
        assert errors == []

    def test_inactive_group_fails(self) -> None:
        errors = validate_expense(
            _group(USER_A, active=False), Decimal("10"), USER_A, "equal", [_split(USER_A, "10")]
        )
        assert any("no longer active" in e for e in errors)

    def test_zero_amount_fails(self) -> None:
        errors = validate_expense(
            _group(USER_A), Decimal("0"), USER_A, "equal", [_split(USER_A, "0")]
        )
        assert any("positive" in e.lower() for e in errors)

    def test_no_participants_fails(self) -> None:
        errors = validate_expense(_group(USER_A), Decimal("10"), USER_A, "equal", [])
        assert any("at least one participant" in e for e in errors)

    def test_payer_not_a_member_fails(self) -> None:
        errors = validate_expense(
            _group(USER_A, USER_B), Decimal("10"), USER_C, "custom", [_split(USER_A, "10")]
        )
        assert any("Payer (carol)" in e for e in errors)

    def test_former_member_cannot_be_split(self) -> None:
        """A deactivated member is no longer a valid participant."""
        errors = validate_expense(
            _group(USER_A, inactive=(USER_B,)),
            Decimal("10"),
            USER_A,
            "custom",
            [_split(USER_A, "5"), _split(USER_B, "5")],
        )
        assert errors == ["User bob is not an active member of the group."]

    def test_duplicate_participant_fails(self) -> None:
        errors = validate_expense(
            _group(USER_A, USER_B),
            Decimal("10"),
            USER_A,
            "custom",
            [_split(USER_B, "5"), _split(USER_B, "5")],
        )
        assert any("more than once" in e for e in errors)

    def test_negative_share_fails(self) -> None:
        errors = validate_expense(
            _group(USER_A, USER_B),
            Decimal("10"),
            USER_A,
            "custom",
            [_split(USER_A, "15"), _split(USER_B, "-5")],
        )
        assert any("cannot be negative" in e for e in errors)

    def test_sum_within_a_cent_passes(self) -> None:
        errors = validate_expense(
            _group(USER_A, USER_B),
            Decimal("10.00"),
            USER_A,
            "custom",
            [_split(USER_A, "5.00"), _split(USER_B, "4.99")],
        )
        assert errors == []

    def test_sum_mismatch_fails(self) -> None:
        errors = validate_expense(
            _group(USER_A, USER_B),
            Decimal("10.00"),
            USER_A,
            "custom",
            [_split(USER_A, "5.00"), _split(USER_B, "4.00")],
        )
        assert any("must equal the expense amount" in e for e in errors)

    def test_percentages_must_total_100(self) -> None:
        errors = validate_expense(
            _group(USER_A, USER_B),
            Decimal("10"),
            USER_A,
            "percentage",
            [_split(USER_A, "5", "50"), _split(USER_B, "5", "40")],
        )
        assert any("sum to 100" in e for e in errors)


class TestValidatePayment:
    """Tests for the validate_payment function."""

    def test_valid_payment_within_debt(self) -> None:
        errors = validate_payment(Decimal("20"), USER_B, USER_A, current_balance=Decimal("30"))
        assert errors == []

    def test_non_positive_amount_fails(self) -> None:
        errors = validate_payment(Decimal("-1"), USER_B, USER_A)
        assert any("positive" in e.lower() for e in errors)

    def test_self_payment_fails(self) -> None:
        errors = validate_payment(Decimal("5"), USER_A, USER_A)
        assert any("different" in e for e in errors)

    def test_overpayment_is_only_a_warning(self) -> None:
        """Paying more than owed warns but is not blocking."""
        errors = validate_payment(Decimal("50"), USER_B, USER_A, current_balance=Decimal("30"))
        assert len(errors) == 1
        assert errors[0].startswith("WARNING:")
        assert hard_errors(errors) == []

    def test_payment_with_nothing_owed_warns_of_credit(self) -> None:
        errors = validate_payment(Decimal("10"), USER_B, USER_A, current_balance=Decimal("-5"))
        assert "create a credit" in errors[0]
        assert hard_errors(errors) == []


def test_hard_errors_keeps_blocking_messages() -> None:
    errors = ["WARNING: soft", "Payment amount must be a positive number."]
    assert hard_errors(errors) == ["Payment amount must be a positive number."]
