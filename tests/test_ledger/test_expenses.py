"""Tests for the expense lifecycle (add, update, delete)."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from conftest import ALICE, BOB, CAROL, FailingSink
from splitledger.config import SideEffectPolicy
from splitledger.ledger.errors import (
    ExpenseNotFound,
    GroupNotFound,
    SideEffectError,
    ValidationFailed,
)
from splitledger.ledger.expenses import ExpenseDraft, add_expense, delete_expense, update_expense
from splitledger.ledger.models import Expense, MessageType, SplitType
from splitledger.ledger.splits import SplitInput
from splitledger.notify.channels import SideChannel, SideChannels
from splitledger.notify.notices import ExpenseAddedNotice


def _draft(
    group_id, amount: str = "90", paid_by: str = ALICE, description: str = "Dinner", **kwargs
) -> ExpenseDraft:
    return ExpenseDraft(
        group_id=group_id,
        description=description,
        amount=Decimal(amount),
        paid_by=paid_by,
        **kwargs,
    )


@pytest_asyncio.fixture
async def trio(make_group, befriend):
    """Alice, Bob and Carol in one group, all friends with each other."""
    group = await make_group(ALICE, BOB, CAROL)
    await befriend(ALICE, BOB)
    await befriend(ALICE, CAROL)
    await befriend(BOB, CAROL)
    return group


# ── Add ───────────────────────────────────────────────────────────────────────


class TestAddExpense:
    """Tests for add_expense."""

    @pytest.mark.asyncio
    async def test_equal_dinner_moves_every_balance(
        self, session, channels, trio, member_balances, group_total, friend_balance
    ) -> None:
        """Alice pays 90 for three → +60 / -30 / -30, total 90."""
        result = await add_expense(session, _draft(trio.id), channels=channels)
        await session.commit()

        assert result.ok
        assert await member_balances(trio.id) == {
            ALICE: Decimal("60"),
            BOB: Decimal("-30"),
            CAROL: Decimal("-30"),
        }
        assert await group_total(trio.id) == Decimal("90")
        assert await friend_balance(ALICE, BOB) == Decimal("30")
        assert await friend_balance(BOB, ALICE) == Decimal("-30")
        assert await friend_balance(CAROL, ALICE) == Decimal("-30")
        assert await friend_balance(BOB, CAROL) == Decimal("0")

    @pytest.mark.asyncio
    async def test_member_balances_always_sum_to_zero(
        self, session, channels, trio, member_balances
    ) -> None:
        await add_expense(session, _draft(trio.id, "100"), channels=channels)
        await add_expense(session, _draft(trio.id, "17.35", paid_by=BOB), channels=channels)
        await add_expense(
            session,
            _draft(
                trio.id,
                "40",
                paid_by=CAROL,
                split_type=SplitType.PERCENTAGE,
                percentages={ALICE: Decimal("25"), CAROL: Decimal("75")},
            ),
            channels=channels,
        )
        await session.commit()

        assert sum((await member_balances(trio.id)).values()) == 0

    @pytest.mark.asyncio
    async def test_stores_splits_and_payer_share_is_paid(self, session, channels, trio) -> None:
        result = await add_expense(session, _draft(trio.id, "100"), channels=channels)

        expense = await session.get(Expense, result.value)
        assert [(s.user_id, s.amount) for s in expense.splits] == [
            (ALICE, Decimal("33.34")),
            (BOB, Decimal("33.33")),
            (CAROL, Decimal("33.33")),
        ]
        assert expense.split_for(ALICE).is_paid
        assert not expense.is_settled
        assert expense.currency == "USD"

    @pytest.mark.asyncio
    async def test_explicit_participants(self, session, channels, trio, member_balances) -> None:
        await add_expense(
            session, _draft(trio.id, "20", participants=[ALICE, BOB]), channels=channels
        )
        await session.commit()

        balances = await member_balances(trio.id)
        assert balances[BOB] == Decimal("-10")
        assert balances[CAROL] == Decimal("0")

    @pytest.mark.asyncio
    async def test_posts_chat_and_notifies_participants(
        self, session, channels, chat_sink, notification_sink, trio
    ) -> None:
        result = await add_expense(session, _draft(trio.id), channels=channels)

        [post] = chat_sink.posts
        assert post.type == MessageType.EXPENSE
        assert post.expense_id == result.value
        assert "$90.00" in post.text

        notices = notification_sink.notices
        assert {n.user_id for n in notices} == {BOB, CAROL}
        assert all(isinstance(n, ExpenseAddedNotice) for n in notices)
        assert notices[0].amount == Decimal("30")

    @pytest.mark.asyncio
    async def test_invalid_split_rejected_without_writes(
        self, session, channels, trio, member_balances
    ) -> None:
        group_id = trio.id
        draft = _draft(
            group_id,
            "50",
            split_type=SplitType.CUSTOM,
            splits=[
                SplitInput(user_id=BOB, amount=Decimal("20")),
                SplitInput(user_id=CAROL, amount=Decimal("20")),
            ],
        )

        with pytest.raises(ValidationFailed) as exc_info:
            await add_expense(session, draft, channels=channels)
        await session.rollback()

        assert "must equal the expense amount" in exc_info.value.errors[0]
        assert set((await member_balances(group_id)).values()) == {Decimal("0")}

    @pytest.mark.asyncio
    async def test_unknown_group(self, session, channels) -> None:
        with pytest.raises(GroupNotFound):
            await add_expense(session, _draft(uuid4()), channels=channels)

    @pytest.mark.asyncio
    async def test_non_friends_reported_as_side_failure(
        self, session, channels, make_group, member_balances, friend_balance
    ) -> None:
        """Group balances still move when participants are not friends."""
        group = await make_group(ALICE, BOB, CAROL)

        result = await add_expense(session, _draft(group.id), channels=channels)
        await session.commit()

        assert not result.ok
        assert [f.channel for f in result.failures] == [SideChannel.FRIEND_BALANCE] * 2
        assert (await member_balances(group.id))[ALICE] == Decimal("60")
        assert await friend_balance(ALICE, BOB) is None

    @pytest.mark.asyncio
    async def test_raise_policy_aborts_on_missing_friendship(
        self, session, chat_sink, notification_sink, make_group, member_balances
    ) -> None:
        group = await make_group(ALICE, BOB)
        group_id = group.id
        strict = SideChannels(
            chat=chat_sink, notifications=notification_sink, policy=SideEffectPolicy.RAISE
        )

        with pytest.raises(SideEffectError):
            await add_expense(session, _draft(group_id, "20"), channels=strict)
        await session.rollback()

        assert await member_balances(group_id) == {ALICE: Decimal("0"), BOB: Decimal("0")}
        assert chat_sink.posts == []

    @pytest.mark.asyncio
    async def test_failing_chat_does_not_block_the_expense(
        self, session, notification_sink, trio, group_total
    ) -> None:
        channels = SideChannels(chat=FailingSink(), notifications=notification_sink)

        result = await add_expense(session, _draft(trio.id), channels=channels)
        await session.commit()

        assert [f.channel for f in result.failures] == [SideChannel.CHAT]
        assert "chat is down" in result.failures[0].reason
        assert await group_total(trio.id) == Decimal("90")


# ── Update ────────────────────────────────────────────────────────────────────


class TestUpdateExpense:
    """Tests for update_expense."""

    @pytest.mark.asyncio
    async def test_raising_amount_applies_only_the_difference(
        self, session, channels, trio, member_balances, group_total, friend_balance
    ) -> None:
        """90 → 120: every share grows by 10."""
        added = await add_expense(session, _draft(trio.id), channels=channels)

        result = await update_expense(session, added.value, _draft(trio.id, "120"), channels=channels)
        await session.commit()

        assert result.value.members == {
            ALICE: Decimal("20"),
            BOB: Decimal("-10"),
            CAROL: Decimal("-10"),
        }
        assert await member_balances(trio.id) == {
            ALICE: Decimal("80"),
            BOB: Decimal("-40"),
            CAROL: Decimal("-40"),
        }
        assert await group_total(trio.id) == Decimal("120")
        assert await friend_balance(BOB, ALICE) == Decimal("-40")

    @pytest.mark.asyncio
    async def test_no_op_update_moves_nothing(
        self, session, channels, trio, member_balances
    ) -> None:
        added = await add_expense(session, _draft(trio.id), channels=channels)
        await session.commit()
        before = await member_balances(trio.id)

        result = await update_expense(
            session, added.value, _draft(trio.id, description="Dinner out"), channels=channels
        )
        await session.commit()

        assert result.value.is_empty()
        assert await member_balances(trio.id) == before
        expense = await session.get(Expense, added.value)
        assert expense.description == "Dinner out"

    @pytest.mark.asyncio
    async def test_changing_payer_rebalances(
        self, session, channels, trio, member_balances, friend_balance
    ) -> None:
        added = await add_expense(session, _draft(trio.id), channels=channels)

        await update_expense(session, added.value, _draft(trio.id, paid_by=BOB), channels=channels)
        await session.commit()

        assert await member_balances(trio.id) == {
            ALICE: Decimal("-30"),
            BOB: Decimal("60"),
            CAROL: Decimal("-30"),
        }
        assert await friend_balance(ALICE, BOB) == Decimal("-30")
        assert await friend_balance(ALICE, CAROL) == Decimal("0")
        expense = await session.get(Expense, added.value)
        assert expense.split_for(BOB).is_paid
        assert not expense.split_for(ALICE).is_paid

    @pytest.mark.asyncio
    async def test_dropping_a_participant(
        self, session, channels, trio, member_balances
    ) -> None:
        added = await add_expense(session, _draft(trio.id), channels=channels)

        await update_expense(
            session,
            added.value,
            _draft(trio.id, participants=[ALICE, BOB]),
            channels=channels,
        )
        await session.commit()

        assert await member_balances(trio.id) == {
            ALICE: Decimal("45"),
            BOB: Decimal("-45"),
            CAROL: Decimal("0"),
        }
        expense = await session.get(Expense, added.value)
        assert expense.split_for(CAROL) is None

    @pytest.mark.asyncio
    async def test_cannot_move_to_another_group(
        self, session, channels, trio, make_group
    ) -> None:
        other = await make_group(ALICE, BOB)
        added = await add_expense(session, _draft(trio.id), channels=channels)

        with pytest.raises(ValidationFailed, match="another group"):
            await update_expense(session, added.value, _draft(other.id), channels=channels)

    @pytest.mark.asyncio
    async def test_unknown_expense(self, session, channels, trio) -> None:
        with pytest.raises(ExpenseNotFound):
            await update_expense(session, uuid4(), _draft(trio.id), channels=channels)


# ── Delete ────────────────────────────────────────────────────────────────────


class TestDeleteExpense:
    """Tests for delete_expense."""

    @pytest.mark.asyncio
    async def test_add_then_delete_restores_every_balance(
        self, session, channels, trio, member_balances, group_total, friend_balance
    ) -> None:
        added = await add_expense(session, _draft(trio.id), channels=channels)
        await session.commit()

        result = await delete_expense(session, added.value, ALICE, channels=channels)
        await session.commit()

        assert result.ok
        assert set((await member_balances(trio.id)).values()) == {Decimal("0")}
        assert await group_total(trio.id) == Decimal("0")
        assert await friend_balance(ALICE, BOB) == Decimal("0")
        assert await session.get(Expense, added.value) is None

    @pytest.mark.asyncio
    async def test_delete_after_update_reverses_the_current_version(
        self, session, channels, trio, member_balances
    ) -> None:
        added = await add_expense(session, _draft(trio.id), channels=channels)
        await update_expense(session, added.value, _draft(trio.id, "150"), channels=channels)

        await delete_expense(session, added.value, BOB, channels=channels)
        await session.commit()

        assert set((await member_balances(trio.id)).values()) == {Decimal("0")}

    @pytest.mark.asyncio
    async def test_posts_deletion_to_chat(self, session, channels, chat_sink, trio) -> None:
        added = await add_expense(session, _draft(trio.id), channels=channels)

        await delete_expense(session, added.value, BOB, channels=channels)

        assert chat_sink.posts[-1].text == 'bob deleted "Dinner"'

    @pytest.mark.asyncio
    async def test_unknown_expense(self, session, channels) -> None:
        with pytest.raises(ExpenseNotFound):
            await delete_expense(session, uuid4(), ALICE, channels=channels)
