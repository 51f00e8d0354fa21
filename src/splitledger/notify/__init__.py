"""Side channels fed by the ledger: group chat and user notifications.

Importing from this package gives the pieces callers wire together at
start-up::

    channels = build_side_channels(settings)
    async with get_session() as session:
        result = await add_expense(session, draft, channels=channels)
"""

from splitledger.notify.channels import (
    LedgerResult,
    SideChannel,
    SideChannels,
    SideEffectFailure,
    build_side_channels,
)
from splitledger.notify.notices import ChatPost, Notice
from splitledger.notify.sinks import ChatSink, DbChatSink, DbNotificationSink, NotificationSink

__all__ = [
    "ChatPost",
    "ChatSink",
    "DbChatSink",
    "DbNotificationSink",
    "LedgerResult",
    "Notice",
    "NotificationSink",
    "SideChannel",
    "SideChannels",
    "SideEffectFailure",
    "build_side_channels",
]
