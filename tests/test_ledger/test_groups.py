"""Tests for group creation and membership."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import ALICE, BOB, CAROL
from splitledger.ledger.errors import GroupNotFound, MemberNotFound, ValidationFailed
from splitledger.ledger.expenses import ExpenseDraft, add_expense, delete_expense
from splitledger.ledger.groups import (
    INVITE_CODE_ALPHABET,
    INVITE_CODE_LENGTH,
    add_group_member,
    create_group,
    join_group_by_invite_code,
    leave_group,
    remove_group_member,
)
from splitledger.ledger.models import MemberRole
from splitledger.ledger.settlements import mark_payment_as_paid
from splitledger.notify.notices import GroupInviteNotice


class TestCreateGroup:
    @pytest.mark.asyncio
    async def test_creator_is_the_only_admin(self, session) -> None:
        group = await create_group(session, "  Flat 4B ", ALICE, currency="eur")

        assert group.name == "Flat 4B"
        assert group.currency == "EUR"
        assert group.total_expenses == Decimal("0")
        [member] = group.members
        assert (member.user_id, member.role, member.balance) == (ALICE, MemberRole.ADMIN, Decimal("0"))

    @pytest.mark.asyncio
    async def test_invite_code_shape(self, session) -> None:
        group = await create_group(session, "Trip", ALICE)

        assert len(group.invite_code) == INVITE_CODE_LENGTH
        assert set(group.invite_code) <= set(INVITE_CODE_ALPHABET)

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, session) -> None:
        with pytest.raises(ValidationFailed):
            await create_group(session, "   ", ALICE)


class TestAddMember:
    """Tests for add_group_member and join_group_by_invite_code."""

    @pytest.mark.asyncio
    async def test_added_member_starts_at_zero_and_is_invited(
        self, session, channels, notification_sink, make_group
    ) -> None:
        group = await make_group(ALICE)

        result = await add_group_member(
            session, group.id, BOB, channels=channels, invited_by=ALICE
        )

        assert result.value.balance == Decimal("0")
        assert result.value.position == 1
        [notice] = notification_sink.notices
        assert isinstance(notice, GroupInviteNotice)
        assert notice.message == "alice added you to Trip"

    @pytest.mark.asyncio
    async def test_adding_twice_changes_nothing(
        self, session, channels, notification_sink, make_group
    ) -> None:
        group = await make_group(ALICE, BOB)

        result = await add_group_member(session, group.id, BOB, channels=channels)

        assert result.value is group.member(BOB)
        assert len(group.members) == 2
        assert notification_sink.notices == []

    @pytest.mark.asyncio
    async def test_join_by_invite_code(self, session, channels, notification_sink, make_group) -> None:
        group = await make_group(ALICE)

        result = await join_group_by_invite_code(
            session, group.invite_code.lower(), CAROL, channels=channels
        )

        assert result.value.id == group.id
        assert group.member(CAROL).is_active
        # Joining yourself sends no invitation.
        assert notification_sink.notices == []

    @pytest.mark.asyncio
    async def test_join_twice_rejected(self, session, channels, make_group) -> None:
        group = await make_group(ALICE, BOB)

        with pytest.raises(ValidationFailed, match="already a member"):
            await join_group_by_invite_code(session, group.invite_code, BOB, channels=channels)

    @pytest.mark.asyncio
    async def test_unknown_invite_code(self, session, channels) -> None:
        with pytest.raises(GroupNotFound):
            await join_group_by_invite_code(session, "ZZZZZZ", BOB, channels=channels)

    @pytest.mark.asyncio
    async def test_unknown_group(self, session, channels) -> None:
        with pytest.raises(GroupNotFound):
            await add_group_member(session, uuid4(), BOB, channels=channels)


class TestLeaveAndRemove:
    """Tests for leave_group and remove_group_member."""

    @pytest.mark.asyncio
    async def test_member_with_balance_cannot_leave(
        self, session, channels, make_group, befriend
    ) -> None:
        group = await make_group(ALICE, BOB)
        await befriend(ALICE, BOB)
        await add_expense(
            session,
            ExpenseDraft(group_id=group.id, description="Taxi", amount=Decimal("20"), paid_by=ALICE),
            channels=channels,
        )

        with pytest.raises(ValidationFailed, match="Settle up first"):
            await leave_group(session, group.id, BOB, channels=channels)

    @pytest.mark.asyncio
    async def test_leaving_deactivates_but_keeps_the_row(
        self, session, channels, chat_sink, make_group
    ) -> None:
        group = await make_group(ALICE, BOB, CAROL)

        await leave_group(session, group.id, CAROL, channels=channels)

        carol = group.member(CAROL)
        assert carol is not None
        assert not carol.is_active
        assert chat_sink.posts[-1].text == "carol left the group"

    @pytest.mark.asyncio
    async def test_last_admin_leaving_promotes_next_member(
        self, session, channels, make_group
    ) -> None:
        group = await make_group(ALICE, BOB, CAROL)

        await leave_group(session, group.id, ALICE, channels=channels)

        assert group.member(BOB).role == MemberRole.ADMIN
        assert group.member(CAROL).role == MemberRole.MEMBER

    @pytest.mark.asyncio
    async def test_last_member_leaving_deactivates_group(
        self, session, channels, chat_sink, make_group
    ) -> None:
        group = await make_group(ALICE)

        await leave_group(session, group.id, ALICE, channels=channels)

        assert not group.is_active
        assert chat_sink.posts == []

    @pytest.mark.asyncio
    async def test_former_member_can_rejoin(self, session, channels, make_group) -> None:
        group = await make_group(ALICE, BOB)
        await remove_group_member(session, group.id, BOB, channels=channels)

        result = await add_group_member(session, group.id, BOB, channels=channels)

        assert result.value.is_active
        assert len(group.members) == 2

    @pytest.mark.asyncio
    async def test_deleting_an_old_expense_reaches_a_former_member(
        self, session, channels, make_group, befriend, member_balances
    ) -> None:
        """Bob settles up and leaves; deleting the expense still reverses his share."""
        group = await make_group(ALICE, BOB)
        await befriend(ALICE, BOB)
        added = await add_expense(
            session,
            ExpenseDraft(group_id=group.id, description="Taxi", amount=Decimal("20"), paid_by=ALICE),
            channels=channels,
        )
        await mark_payment_as_paid(
            session, BOB, ALICE, Decimal("10"), channels=channels, group_id=group.id
        )
        await remove_group_member(session, group.id, BOB, channels=channels)

        await delete_expense(session, added.value, ALICE, channels=channels)
        await session.commit()

        # The payment stays on record, so it is now a credit for Bob.
        assert await member_balances(group.id) == {ALICE: Decimal("-10"), BOB: Decimal("10")}

    @pytest.mark.asyncio
    async def test_remove_non_member(self, session, channels, make_group) -> None:
        group = await make_group(ALICE)

        with pytest.raises(MemberNotFound):
            await remove_group_member(session, group.id, BOB, channels=channels)
