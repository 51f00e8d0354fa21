"""Shared fixtures: a throwaway SQLite database and recording side channels."""

from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine

from splitledger.db.session import create_session_factory
from splitledger.ledger.groups import add_group_member, create_group
from splitledger.ledger.models import Base, Friendship, FriendshipStatus, Group
from splitledger.notify.channels import SideChannels

ALICE = "alice"
BOB = "bob"
CAROL = "carol"


# ── Side channels ─────────────────────────────────────────────────────────────


class RecordingChatSink:
    def __init__(self) -> None:
        self.posts = []

    async def post(self, session, post) -> None:
        self.posts.append(post)


class RecordingNotificationSink:
    def __init__(self) -> None:
        self.notices = []

    async def notify(self, session, notice) -> None:
        self.notices.append(notice)


class FailingSink:
    """A sink whose every delivery raises."""

    async def post(self, session, post) -> None:
        raise RuntimeError("chat is down")

    async def notify(self, session, notice) -> None:
        raise RuntimeError("notifications are down")


@pytest.fixture
def chat_sink() -> RecordingChatSink:
    return RecordingChatSink()


@pytest.fixture
def notification_sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def channels(chat_sink, notification_sink) -> SideChannels:
    return SideChannels(chat=chat_sink, notifications=notification_sink)


# ── Database ──────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; take over BEGIN.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# ── Builders and readers ──────────────────────────────────────────────────────


@pytest.fixture
def make_group(session):
    """Create a committed group whose first user is the admin."""

    async def _make(*user_ids: str, currency: str = "USD") -> Group:
        quiet = SideChannels(chat=RecordingChatSink(), notifications=RecordingNotificationSink())
        group = await create_group(session, "Trip", user_ids[0], currency=currency)
        for user_id in user_ids[1:]:
            await add_group_member(session, group.id, user_id, channels=quiet)
        await session.commit()
        return group

    return _make


@pytest.fixture
def befriend(session):
    """Create both mirror records of an accepted friendship."""

    async def _befriend(user_a: str, user_b: str) -> None:
        session.add_all(
            [
                Friendship(
                    owner_user_id=user_a,
                    other_user_id=user_b,
                    balance=Decimal("0"),
                    status=FriendshipStatus.ACCEPTED,
                ),
                Friendship(
                    owner_user_id=user_b,
                    other_user_id=user_a,
                    balance=Decimal("0"),
                    status=FriendshipStatus.ACCEPTED,
                ),
            ]
        )
        await session.commit()

    return _befriend


@pytest.fixture
def member_balances(session_factory):
    """Re-read a group's member balances through a fresh session."""

    async def _read(group_id) -> dict[str, Decimal]:
        async with session_factory() as fresh:
            group = await fresh.get(Group, group_id)
            return {m.user_id: m.balance for m in group.members}

    return _read


@pytest.fixture
def group_total(session_factory):
    async def _read(group_id) -> Decimal:
        async with session_factory() as fresh:
            group = await fresh.get(Group, group_id)
            return group.total_expenses

    return _read


@pytest.fixture
def friend_balance(session_factory):
    """Re-read ``friend(owner, other).balance``; ``None`` if no mirror exists."""

    async def _read(owner: str, other: str) -> Decimal | None:
        async with session_factory() as fresh:
            result = await fresh.execute(
                select(Friendship.balance).where(
                    Friendship.owner_user_id == owner,
                    Friendship.other_user_id == other,
                )
            )
            return result.scalar_one_or_none()

    return _read
