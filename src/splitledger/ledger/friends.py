"""Friendship lifecycle.

A friendship is stored as two mirror records, ``A → B`` and ``B → A``,
whose balances are always additive inverses.  Both mirrors are created,
blocked or removed together in one transaction.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.ledger.errors import FriendshipNotFound, ValidationFailed
from splitledger.ledger.models import (
    FriendRequest,
    FriendRequestStatus,
    Friendship,
    FriendshipStatus,
)
from splitledger.ledger.repository import (
    flush_or_conflict,
    get_friendship,
    get_friendships,
    get_pending_request_between,
    require_friend_request,
)
from splitledger.notify.channels import LedgerResult, SideChannels, SideEffectFailure
from splitledger.notify.notices import FriendRequestNotice

logger = logging.getLogger(__name__)


async def send_friend_request(
    session: AsyncSession,
    from_user_id: str,
    to_user_id: str,
    *,
    channels: SideChannels,
    message: str | None = None,
) -> LedgerResult[FriendRequest]:
    """Ask *to_user_id* to become friends with *from_user_id*.

    Raises:
        ValidationFailed: On a self-request, an existing friendship, a
            pending request in either direction, or a blocked pair.
    """
    errors: list[str] = []
    if from_user_id == to_user_id:
        errors.append("You cannot add yourself as a friend.")
    else:
        mine = await get_friendship(session, from_user_id, to_user_id)
        theirs = await get_friendship(session, to_user_id, from_user_id)
        statuses = {m.status for m in (mine, theirs) if m is not None}
        if FriendshipStatus.BLOCKED in statuses:
            errors.append("Unable to send friend request to this user.")
        elif FriendshipStatus.ACCEPTED in statuses:
            errors.append(f"{to_user_id} is already in your friends list.")
        elif await get_pending_request_between(session, from_user_id, to_user_id):
            errors.append(f"A friend request with {to_user_id} is already pending.")
    if errors:
        raise ValidationFailed(errors)

    request = FriendRequest(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        message=message,
        status=FriendRequestStatus.PENDING,
    )
    session.add(request)
    await session.flush()

    failures: list[SideEffectFailure] = []
    await channels.notify(
        session,
        failures,
        FriendRequestNotice(
            user_id=to_user_id,
            request_id=request.id,
            from_user_id=from_user_id,
            outcome="received",
        ),
    )
    logger.info("Friend request %s: %s → %s", request.id, from_user_id, to_user_id)
    return LedgerResult(request, failures)


async def _answerable(session: AsyncSession, request_id: uuid.UUID) -> FriendRequest:
    request = await require_friend_request(session, request_id)
    if request.status != FriendRequestStatus.PENDING:
        raise ValidationFailed([f"Friend request is already {request.status}."])
    return request


async def _ensure_mirror(session: AsyncSession, owner: str, other: str) -> Friendship:
    mirror = await get_friendship(session, owner, other)
    if mirror is None:
        mirror = Friendship(owner_user_id=owner, other_user_id=other)
        session.add(mirror)
    mirror.status = FriendshipStatus.ACCEPTED
    return mirror


async def accept_friend_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    channels: SideChannels,
) -> LedgerResult[FriendRequest]:
    """Accept a pending request and create both mirror records.

    Mirrors left over from an earlier friendship are reactivated with
    their balances intact.

    Raises:
        FriendRequestNotFound: If the request does not exist.
        ValidationFailed: If it has already been answered.
    """
    request = await _answerable(session, request_id)
    request.status = FriendRequestStatus.ACCEPTED

    await _ensure_mirror(session, request.from_user_id, request.to_user_id)
    await _ensure_mirror(session, request.to_user_id, request.from_user_id)
    await flush_or_conflict(session)

    failures: list[SideEffectFailure] = []
    await channels.notify(
        session,
        failures,
        FriendRequestNotice(
            user_id=request.from_user_id,
            request_id=request.id,
            from_user_id=request.to_user_id,
            outcome="accepted",
        ),
    )
    logger.info("%s and %s are now friends", request.from_user_id, request.to_user_id)
    return LedgerResult(request, failures)


async def decline_friend_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    channels: SideChannels,
) -> LedgerResult[FriendRequest]:
    request = await _answerable(session, request_id)
    request.status = FriendRequestStatus.DECLINED
    await session.flush()

    failures: list[SideEffectFailure] = []
    await channels.notify(
        session,
        failures,
        FriendRequestNotice(
            user_id=request.from_user_id,
            request_id=request.id,
            from_user_id=request.to_user_id,
            outcome="declined",
        ),
    )
    return LedgerResult(request, failures)


async def remove_friend(session: AsyncSession, user_id: str, friend_id: str) -> None:
    """Delete both mirror records.

    Raises:
        FriendshipNotFound: If neither mirror exists.
    """
    mirrors = [
        m
        for m in (
            await get_friendship(session, user_id, friend_id),
            await get_friendship(session, friend_id, user_id),
        )
        if m is not None
    ]
    if not mirrors:
        raise FriendshipNotFound(user_id, friend_id)
    for mirror in mirrors:
        if mirror.balance != 0:
            logger.warning(
                "Removing friendship %s→%s with outstanding balance %s",
                mirror.owner_user_id, mirror.other_user_id, mirror.balance,
            )
        await session.delete(mirror)
    await flush_or_conflict(session)
    logger.info("Friendship between %s and %s removed", user_id, friend_id)


async def block_friend(session: AsyncSession, user_id: str, friend_id: str) -> None:
    """Block *friend_id* for *user_id*.

    Both mirrors become ``blocked`` (balances are kept) and pending
    requests between the two are declined.  Blocking a stranger creates a
    blocked mirror so later requests are refused.
    """
    if user_id == friend_id:
        raise ValidationFailed(["You cannot block yourself."])

    mine = await get_friendship(session, user_id, friend_id)
    if mine is None:
        mine = Friendship(owner_user_id=user_id, other_user_id=friend_id)
        session.add(mine)
    mine.status = FriendshipStatus.BLOCKED

    theirs = await get_friendship(session, friend_id, user_id)
    if theirs is not None:
        theirs.status = FriendshipStatus.BLOCKED

    while (pending := await get_pending_request_between(session, user_id, friend_id)) is not None:
        pending.status = FriendRequestStatus.DECLINED
        await session.flush()

    await flush_or_conflict(session)
    logger.info("%s blocked %s", user_id, friend_id)


async def get_friends(session: AsyncSession, user_id: str) -> list[Friendship]:
    """Return *user_id*'s accepted friendships, most recently active first."""
    return await get_friendships(session, user_id, FriendshipStatus.ACCEPTED)
