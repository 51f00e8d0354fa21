"""Side-channel dispatch and ledger results.

Ledger operations never swallow side-channel failures silently.  Each
failure becomes a :class:`SideEffectFailure` on the returned
:class:`LedgerResult`, or, under the ``raise`` policy, a
:class:`~splitledger.ledger.errors.SideEffectError` that rolls the whole
operation back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.config import SideEffectPolicy, Settings
from splitledger.ledger.errors import SideEffectError
from splitledger.notify.notices import ChatPost, Notice
from splitledger.notify.sinks import ChatSink, DbChatSink, DbNotificationSink, NotificationSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SideChannel(StrEnum):
    FRIEND_BALANCE = "friend_balance"
    CHAT = "chat"
    NOTIFICATION = "notification"


@dataclass(frozen=True)
class SideEffectFailure:
    """One best-effort write that did not happen."""

    channel: SideChannel
    reason: str


@dataclass
class LedgerResult(Generic[T]):
    """The value of a ledger operation plus any side-channel failures."""

    value: T
    failures: list[SideEffectFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class SideChannels:
    """Sinks and failure policy shared by every ledger operation.

    Built once at start-up with :func:`build_side_channels` and passed to
    each call.
    """

    chat: ChatSink
    notifications: NotificationSink
    policy: SideEffectPolicy = SideEffectPolicy.REPORT

    def record(
        self,
        failures: list[SideEffectFailure],
        channel: SideChannel,
        reason: str,
    ) -> None:
        """Record a failed side effect according to the policy.

        Raises:
            SideEffectError: Under the ``raise`` policy.
        """
        if self.policy == SideEffectPolicy.RAISE:
            raise SideEffectError(channel, reason)
        logger.warning("Side effect %s skipped: %s", channel, reason)
        failures.append(SideEffectFailure(channel=channel, reason=reason))

    async def post_chat(
        self,
        session: AsyncSession,
        failures: list[SideEffectFailure],
        post: ChatPost,
    ) -> None:
        try:
            await self.chat.post(session, post)
        except Exception as exc:
            self.record(failures, SideChannel.CHAT, f"{type(exc).__name__}: {exc}")

    async def notify(
        self,
        session: AsyncSession,
        failures: list[SideEffectFailure],
        notice: Notice,
    ) -> None:
        try:
            await self.notifications.notify(session, notice)
        except Exception as exc:
            self.record(failures, SideChannel.NOTIFICATION, f"{type(exc).__name__}: {exc}")


def build_side_channels(settings: Settings) -> SideChannels:
    """Create the database-backed side channels for this process."""
    return SideChannels(
        chat=DbChatSink(),
        notifications=DbNotificationSink(),
        policy=settings.side_effect_policy,
    )
