"""Typed notification and chat payloads.

Each notification type is its own Pydantic model with a literal ``type``
tag, and :data:`Notice` is the discriminated union of all of them.  A
notice renders its own title and message so sinks only have to store or
deliver it.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from splitledger.formatters import format_money
from splitledger.ledger.models import MessageType


class _BaseNotice(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Recipient of the notification.")

    @property
    def title(self) -> str:
        raise NotImplementedError

    @property
    def message(self) -> str:
        raise NotImplementedError

    def payload(self) -> dict[str, Any]:
        """JSON-safe data stored alongside the rendered text."""
        return self.model_dump(mode="json", exclude={"user_id", "type"})


class ExpenseAddedNotice(_BaseNotice):
    type: Literal["expense_added"] = "expense_added"
    expense_id: uuid.UUID
    group_id: uuid.UUID
    paid_by: str
    description: str
    amount: Decimal
    currency: str

    @property
    def title(self) -> str:
        return "New Expense"

    @property
    def message(self) -> str:
        return f"{self.paid_by} added {self.description} ({format_money(self.amount, self.currency)})"


class PaymentReceivedNotice(_BaseNotice):
    type: Literal["payment_received"] = "payment_received"
    payment_id: uuid.UUID
    from_user_id: str
    amount: Decimal
    currency: str
    group_id: uuid.UUID | None = None
    expense_id: uuid.UUID | None = None

    @property
    def title(self) -> str:
        return "Payment Received"

    @property
    def message(self) -> str:
        return f"{self.from_user_id} sent you {format_money(self.amount, self.currency)}"


class PaymentSentNotice(_BaseNotice):
    type: Literal["expense_settled"] = "expense_settled"
    payment_id: uuid.UUID
    to_user_id: str
    amount: Decimal
    currency: str
    group_id: uuid.UUID | None = None
    expense_id: uuid.UUID | None = None

    @property
    def title(self) -> str:
        return "Payment Confirmed"

    @property
    def message(self) -> str:
        return (
            f"Your payment of {format_money(self.amount, self.currency)} "
            f"to {self.to_user_id} has been recorded"
        )


class FriendRequestNotice(_BaseNotice):
    type: Literal["friend_request"] = "friend_request"
    request_id: uuid.UUID
    from_user_id: str
    outcome: Literal["received", "accepted", "declined"]

    @property
    def title(self) -> str:
        return {
            "received": "New Friend Request",
            "accepted": "Friend Request Accepted",
            "declined": "Friend Request Declined",
        }[self.outcome]

    @property
    def message(self) -> str:
        if self.outcome == "received":
            return f"{self.from_user_id} wants to split expenses with you"
        if self.outcome == "accepted":
            return f"{self.from_user_id} accepted your friend request"
        return "Someone declined your friend request"


class GroupInviteNotice(_BaseNotice):
    type: Literal["group_invite"] = "group_invite"
    group_id: uuid.UUID
    group_name: str
    invited_by: str

    @property
    def title(self) -> str:
        return "Group Invitation"

    @property
    def message(self) -> str:
        return f"{self.invited_by} added you to {self.group_name}"


Notice = Annotated[
    Union[
        ExpenseAddedNotice,
        PaymentReceivedNotice,
        PaymentSentNotice,
        FriendRequestNotice,
        GroupInviteNotice,
    ],
    Field(discriminator="type"),
]


class ChatPost(BaseModel):
    """A message the ledger posts into a group's chat."""

    model_config = ConfigDict(frozen=True)

    group_id: uuid.UUID
    text: str
    user_id: str = "system"
    type: MessageType = MessageType.SYSTEM
    expense_id: uuid.UUID | None = None
