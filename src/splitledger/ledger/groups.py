"""Group membership.

Members are never deleted: removing or leaving deactivates the member row
so that old expenses still resolve every participant.  A member can only
go while their balance is zero, which keeps the group's balances summing
to zero.
"""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.config import settings
from splitledger.ledger.errors import GroupNotFound, MemberNotFound, ValidationFailed
from splitledger.ledger.models import Group, GroupMember, MemberRole
from splitledger.ledger.repository import (
    flush_or_conflict,
    get_group_by_invite_code,
    require_group,
)
from splitledger.notify.channels import LedgerResult, SideChannels, SideEffectFailure
from splitledger.notify.notices import ChatPost, GroupInviteNotice

logger = logging.getLogger(__name__)

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 6


async def _new_invite_code(session: AsyncSession) -> str:
    while True:
        code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
        taken = await session.scalar(select(Group.id).where(Group.invite_code == code))
        if taken is None:
            return code


async def create_group(
    session: AsyncSession,
    name: str,
    created_by: str,
    *,
    currency: str | None = None,
    description: str | None = None,
) -> Group:
    """Create a group with *created_by* as its first admin."""
    name = name.strip()
    if not name:
        raise ValidationFailed(["Group name cannot be empty."])

    group = Group(
        name=name,
        description=description,
        created_by=created_by,
        currency=(currency or settings.default_currency).strip().upper(),
        invite_code=await _new_invite_code(session),
        total_expenses=Decimal("0"),
        is_active=True,
    )
    group.members = [
        GroupMember(user_id=created_by, role=MemberRole.ADMIN, balance=Decimal("0"), position=0)
    ]
    session.add(group)
    await session.flush()
    logger.info("Group %s (%s) created by %s", group.id, group.name, created_by)
    return group


async def add_group_member(
    session: AsyncSession,
    group_id: uuid.UUID,
    user_id: str,
    *,
    channels: SideChannels,
    role: MemberRole = MemberRole.MEMBER,
    invited_by: str | None = None,
) -> LedgerResult[GroupMember]:
    """Add *user_id* to a group.

    Adding an active member again changes nothing.  A former member is
    reactivated at the end of the member order.
    """
    group = await require_group(session, group_id)
    member = group.member(user_id)
    if member is not None and member.is_active:
        logger.debug("%s is already a member of group %s", user_id, group_id)
        return LedgerResult(member, [])

    position = max((m.position for m in group.members), default=-1) + 1
    if member is None:
        member = GroupMember(user_id=user_id, role=role, balance=Decimal("0"), position=position)
        group.members.append(member)
    else:
        member.is_active = True
        member.role = role
        member.position = position
    if not group.is_active:
        group.is_active = True
    await flush_or_conflict(session)

    failures: list[SideEffectFailure] = []
    inviter = invited_by or group.created_by
    if inviter != user_id:
        await channels.notify(
            session,
            failures,
            GroupInviteNotice(
                user_id=user_id,
                group_id=group.id,
                group_name=group.name,
                invited_by=inviter,
            ),
        )
    logger.info("%s joined group %s", user_id, group.id)
    return LedgerResult(member, failures)


async def join_group_by_invite_code(
    session: AsyncSession,
    invite_code: str,
    user_id: str,
    *,
    channels: SideChannels,
) -> LedgerResult[Group]:
    """Join the active group whose invite code is *invite_code*.

    Raises:
        GroupNotFound: If no active group has that code.
        ValidationFailed: If *user_id* is already an active member.
    """
    group = await get_group_by_invite_code(session, invite_code)
    if group is None:
        raise GroupNotFound(invite_code)
    existing = group.member(user_id)
    if existing is not None and existing.is_active:
        raise ValidationFailed(["You are already a member of this group."])

    result = await add_group_member(
        session, group.id, user_id, channels=channels, invited_by=user_id
    )
    return LedgerResult(group, result.failures)


async def _deactivate_member(
    session: AsyncSession,
    group_id: uuid.UUID,
    user_id: str,
    chat_text: str,
    channels: SideChannels,
) -> LedgerResult[Group]:
    group = await require_group(session, group_id)
    member = group.member(user_id)
    if member is None or not member.is_active:
        raise MemberNotFound(group_id, user_id)
    if member.balance != 0:
        raise ValidationFailed(
            [f"Cannot remove member with pending balance ({member.balance}). Settle up first."]
        )

    member.is_active = False
    member.role = MemberRole.MEMBER

    remaining = [m for m in group.members if m.is_active]
    if not remaining:
        group.is_active = False
    elif not any(m.role == MemberRole.ADMIN for m in remaining):
        remaining[0].role = MemberRole.ADMIN
        logger.info("%s promoted to admin of group %s", remaining[0].user_id, group.id)
    await flush_or_conflict(session)

    failures: list[SideEffectFailure] = []
    if group.is_active:
        await channels.post_chat(session, failures, ChatPost(group_id=group.id, text=chat_text))
    return LedgerResult(group, failures)


async def remove_group_member(
    session: AsyncSession,
    group_id: uuid.UUID,
    user_id: str,
    *,
    channels: SideChannels,
) -> LedgerResult[Group]:
    """Remove a member whose balance is zero.

    Raises:
        GroupNotFound: If the group does not exist.
        MemberNotFound: If *user_id* is not an active member.
        ValidationFailed: If the member still owes or is owed money.
    """
    result = await _deactivate_member(
        session, group_id, user_id, f"{user_id} has been removed from the group", channels
    )
    logger.info("%s removed from group %s", user_id, group_id)
    return result


async def leave_group(
    session: AsyncSession,
    group_id: uuid.UUID,
    user_id: str,
    *,
    channels: SideChannels,
) -> LedgerResult[Group]:
    """Leave a group; same rules as :func:`remove_group_member`."""
    result = await _deactivate_member(
        session, group_id, user_id, f"{user_id} left the group", channels
    )
    logger.info("%s left group %s", user_id, group_id)
    return result
