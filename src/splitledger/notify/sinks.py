"""Chat and notification sinks.

A sink is where the ledger sends its side effects.  The protocols keep the
ledger independent of delivery; the database-backed implementations write
``group_messages`` / ``notifications`` rows inside a savepoint, so a
failed insert rolls back only itself and never the ledger's own writes.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.ledger.models import ChatMessage, Notification
from splitledger.notify.notices import ChatPost, Notice

logger = logging.getLogger(__name__)


class ChatSink(Protocol):
    async def post(self, session: AsyncSession, post: ChatPost) -> None: ...


class NotificationSink(Protocol):
    async def notify(self, session: AsyncSession, notice: Notice) -> None: ...


class DbChatSink:
    """Persist chat posts as :class:`ChatMessage` rows."""

    async def post(self, session: AsyncSession, post: ChatPost) -> None:
        async with session.begin_nested():
            session.add(
                ChatMessage(
                    group_id=post.group_id,
                    user_id=post.user_id,
                    message=post.text,
                    type=post.type,
                    expense_id=post.expense_id,
                )
            )
        logger.debug("Posted to group %s chat: %s", post.group_id, post.text)


class DbNotificationSink:
    """Persist notices as :class:`Notification` rows."""

    async def notify(self, session: AsyncSession, notice: Notice) -> None:
        async with session.begin_nested():
            session.add(
                Notification(
                    user_id=notice.user_id,
                    type=notice.type,
                    title=notice.title,
                    message=notice.message,
                    data=notice.payload(),
                )
            )
        logger.debug("Queued %s notification for %s", notice.type, notice.user_id)


# ── Reading notifications back ───────────────────────────────────────────────


async def list_notifications(
    session: AsyncSession,
    user_id: str,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    """Return *user_id*'s notifications, newest first."""
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_notification_read(
    session: AsyncSession,
    notification_id: uuid.UUID,
    user_id: str | None = None,
) -> bool:
    """Mark one notification read.

    Returns ``False`` if it does not exist or, when *user_id* is given,
    belongs to someone else.
    """
    notification = await session.get(Notification, notification_id)
    if notification is None or (user_id is not None and notification.user_id != user_id):
        return False
    notification.is_read = True
    await session.flush()
    return True


async def mark_all_notifications_read(session: AsyncSession, user_id: str) -> int:
    """Mark every unread notification of *user_id* read; return the count."""
    stmt = (
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    result = await session.execute(stmt)
    return result.rowcount  # type: ignore[union-attr]
