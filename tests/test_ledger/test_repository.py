"""Tests for the ledger repository (expense and payment persistence)."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from splitledger.ledger.errors import ConcurrentWriteLost, ExpenseNotFound, GroupNotFound
from splitledger.ledger.models import Expense, Payment, PaymentMethod, PaymentStatus
from splitledger.ledger.repository import (
    flush_or_conflict,
    get_group_by_invite_code,
    get_user_groups,
    require_expense,
    require_group,
    save_expense,
    save_payment,
)


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    return session


@pytest.mark.asyncio
async def test_save_expense_creates_row_with_splits() -> None:
    """save_expense should add one Expense carrying its splits in order."""
    session = _mock_session()
    group_id = uuid4()

    result = await save_expense(
        session,
        group_id=group_id,
        description="Dinner",
        amount=Decimal("90.00"),
        currency="USD",
        paid_by="alice",
        split_type="equal",
        splits=[
            ("alice", Decimal("30.00"), None),
            ("bob", Decimal("30.00"), None),
            ("carol", Decimal("30.00"), None),
        ],
    )

    session.add.assert_called_once()
    added = session.add.call_args[0][0]
    assert isinstance(added, Expense)
    assert added is result
    assert added.group_id == group_id
    assert added.is_settled is False
    assert [s.user_id for s in added.splits] == ["alice", "bob", "carol"]
    assert [s.position for s in added.splits] == [0, 1, 2]
    session.flush.assert_called_once()


@pytest.mark.asyncio
async def test_save_expense_marks_payer_split_paid() -> None:
    """The payer's own share is already covered."""
    session = _mock_session()

    expense = await save_expense(
        session,
        group_id=uuid4(),
        description="Taxi",
        amount=Decimal("20"),
        currency="EUR",
        paid_by="bob",
        split_type="custom",
        splits=[("alice", Decimal("10"), None), ("bob", Decimal("10"), None)],
    )

    assert {s.user_id: s.is_paid for s in expense.splits} == {"alice": False, "bob": True}


@pytest.mark.asyncio
async def test_save_payment_is_completed() -> None:
    session = _mock_session()
    expense_id = uuid4()

    payment = await save_payment(
        session,
        from_user_id="bob",
        to_user_id="alice",
        amount=Decimal("30"),
        currency="USD",
        expense_id=expense_id,
    )

    added = session.add.call_args[0][0]
    assert isinstance(added, Payment)
    assert payment is added
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.method == PaymentMethod.MANUAL_SETTLEMENT
    assert payment.expense_id == expense_id
    assert payment.group_id is None
    session.flush.assert_called_once()


# ── Lookups ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_require_group_raises_when_missing() -> None:
    session = AsyncMock()
    session.get = AsyncMock(return_value=None)

    with pytest.raises(GroupNotFound) as exc_info:
        await require_group(session, uuid4())
    assert "group_id" in exc_info.value.details


@pytest.mark.asyncio
async def test_require_expense_raises_when_missing() -> None:
    session = AsyncMock()
    session.get = AsyncMock(return_value=None)

    with pytest.raises(ExpenseNotFound):
        await require_expense(session, uuid4())


@pytest.mark.asyncio
async def test_flush_or_conflict_translates_stale_data() -> None:
    """A lost version race surfaces as ConcurrentWriteLost."""
    session = AsyncMock()
    session.flush = AsyncMock(side_effect=StaleDataError("version mismatch"))

    with pytest.raises(ConcurrentWriteLost) as exc_info:
        await flush_or_conflict(session)
    assert isinstance(exc_info.value.__cause__, StaleDataError)


@pytest.mark.asyncio
async def test_invite_code_lookup_is_case_insensitive(session, make_group) -> None:
    group = await make_group("alice", "bob")

    found = await get_group_by_invite_code(session, f"  {group.invite_code.lower()} ")

    assert found is not None
    assert found.id == group.id


@pytest.mark.asyncio
async def test_user_groups_only_lists_active_memberships(session, make_group) -> None:
    first = await make_group("alice", "bob")
    await make_group("carol")
    first.member("bob").is_active = False
    await session.commit()

    assert [g.id for g in await get_user_groups(session, "alice")] == [first.id]
    assert await get_user_groups(session, "bob") == []
