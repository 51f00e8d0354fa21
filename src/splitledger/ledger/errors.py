"""Exception hierarchy for ledger operations.

Structural failures (a missing group, a stale write) raise and abort the
whole operation. Best-effort side channels never raise from here unless
the ``raise`` side-effect policy asks for it (see :mod:`splitledger.notify`).
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for every error raised by the ledger."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NotFound(LedgerError):
    """A referenced document does not exist."""


class GroupNotFound(NotFound):
    def __init__(self, group_id: object) -> None:
        super().__init__("Group not found", {"group_id": str(group_id)})


class MemberNotFound(NotFound):
    def __init__(self, group_id: object, user_id: str) -> None:
        super().__init__(
            "Member not found in group",
            {"group_id": str(group_id), "user_id": user_id},
        )


class ExpenseNotFound(NotFound):
    def __init__(self, expense_id: object) -> None:
        super().__init__("Expense not found", {"expense_id": str(expense_id)})


class FriendshipNotFound(NotFound):
    def __init__(self, user_id: str, friend_id: str) -> None:
        super().__init__(
            "Friendship not found",
            {"user_id": user_id, "friend_id": friend_id},
        )


class FriendRequestNotFound(NotFound):
    def __init__(self, request_id: object) -> None:
        super().__init__("Friend request not found", {"request_id": str(request_id)})


class ValidationFailed(LedgerError):
    """Caller-supplied data is inconsistent (e.g. splits don't sum to the total)."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(" ".join(errors), {"errors": errors})
        self.errors = errors


class NoOutstandingBalance(LedgerError):
    """A settle-all was requested for a pair that owes nothing."""

    def __init__(self, user_id: str, friend_id: str) -> None:
        super().__init__(
            "No outstanding balance to settle",
            {"user_id": user_id, "friend_id": friend_id},
        )


class ConcurrentWriteLost(LedgerError):
    """Another writer changed a balance document between our read and write."""


class SideEffectError(LedgerError):
    """A side channel failed while the ``raise`` policy is active."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(
            f"Side effect '{channel}' failed: {reason}",
            {"channel": channel, "reason": reason},
        )
        self.channel = channel
        self.reason = reason
