"""JSON handlers for the ledger HTTP API.

Each handler reads the caller from ``request["user_id"]`` and the
transaction from ``request["session"]`` (see
:mod:`splitledger.api.middleware`), calls one ledger operation, and
returns ``{"ok": true, "data": ..., "failures": [...]}``.
"""

from __future__ import annotations

import json
import logging
import uuid
from decimal import Decimal
from typing import Any

from aiohttp import web
from pydantic import BaseModel, Field

from splitledger.ledger import expenses, friends, groups, queries, settlements
from splitledger.ledger.models import (
    Expense,
    FriendRequest,
    Friendship,
    Group,
    GroupMember,
    MemberRole,
    Notification,
    Payment,
    PaymentMethod,
)
from splitledger.ledger.repository import (
    get_user_groups,
    require_expense,
    require_friend_request,
    require_group,
)
from splitledger.notify.channels import LedgerResult, SideChannels
from splitledger.notify.sinks import (
    list_notifications,
    mark_all_notifications_read,
    mark_notification_read,
)

logger = logging.getLogger(__name__)

CHANNELS: web.AppKey[SideChannels] = web.AppKey("channels", SideChannels)

routes = web.RouteTableDef()


# ── Serialisation ─────────────────────────────────────────────────────────────


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def _member_json(m: GroupMember) -> dict[str, Any]:
    return {
        "user_id": m.user_id,
        "role": m.role,
        "balance": _money(m.balance),
        "is_active": m.is_active,
    }


def _group_json(g: Group) -> dict[str, Any]:
    return {
        "id": str(g.id),
        "name": g.name,
        "description": g.description,
        "currency": g.currency,
        "created_by": g.created_by,
        "invite_code": g.invite_code,
        "total_expenses": _money(g.total_expenses),
        "is_active": g.is_active,
        "members": [_member_json(m) for m in g.members],
    }


def _expense_json(e: Expense) -> dict[str, Any]:
    return {
        "id": str(e.id),
        "group_id": str(e.group_id),
        "description": e.description,
        "amount": _money(e.amount),
        "currency": e.currency,
        "category": e.category,
        "paid_by": e.paid_by,
        "split_type": e.split_type,
        "is_settled": e.is_settled,
        "created_at": e.created_at.isoformat() if e.created_at else None,
        "splits": [
            {
                "user_id": s.user_id,
                "amount": _money(s.amount),
                "percentage": str(s.percentage) if s.percentage is not None else None,
                "is_paid": s.is_paid,
            }
            for s in e.splits
        ],
    }


def _payment_json(p: Payment) -> dict[str, Any]:
    return {
        "id": str(p.id),
        "from_user_id": p.from_user_id,
        "to_user_id": p.to_user_id,
        "amount": _money(p.amount),
        "currency": p.currency,
        "method": p.method,
        "status": p.status,
        "group_id": str(p.group_id) if p.group_id else None,
        "expense_id": str(p.expense_id) if p.expense_id else None,
        "description": p.description,
    }


def _friendship_json(f: Friendship) -> dict[str, Any]:
    return {
        "user_id": f.other_user_id,
        "balance": _money(f.balance),
        "status": f.status,
        "last_activity": f.last_activity.isoformat() if f.last_activity else None,
    }


def _request_json(r: FriendRequest) -> dict[str, Any]:
    return {
        "id": str(r.id),
        "from_user_id": r.from_user_id,
        "to_user_id": r.to_user_id,
        "message": r.message,
        "status": r.status,
    }


def _notification_json(n: Notification) -> dict[str, Any]:
    return {
        "id": str(n.id),
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "data": n.data,
        "is_read": n.is_read,
    }


def _ok(data: Any, result: LedgerResult | None = None, status: int = 200) -> web.Response:
    failures = [] if result is None else [
        {"channel": f.channel, "reason": f.reason} for f in result.failures
    ]
    return web.json_response({"ok": True, "data": data, "failures": failures}, status=status)


# ── Request helpers ───────────────────────────────────────────────────────────


def _path_uuid(request: web.Request, name: str) -> uuid.UUID:
    try:
        return uuid.UUID(request.match_info[name])
    except ValueError:
        raise web.HTTPNotFound(
            text=json.dumps({"ok": False, "error": f"Invalid {name}"}),
            content_type="application/json",
        ) from None


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"ok": False, "error": "Invalid JSON"}),
            content_type="application/json",
        ) from None
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"ok": False, "error": "Expected a JSON object"}),
            content_type="application/json",
        )
    return body


class GroupBody(BaseModel):
    name: str
    currency: str | None = None
    description: str | None = None


class MemberBody(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: MemberRole = MemberRole.MEMBER


class JoinBody(BaseModel):
    invite_code: str = Field(..., min_length=1)


class SettlementBody(BaseModel):
    paid: dict[str, bool]
    method: PaymentMethod = PaymentMethod.MANUAL_SETTLEMENT


class PaymentBody(BaseModel):
    payee_id: str = Field(..., min_length=1)
    amount: Decimal
    group_id: uuid.UUID | None = None
    description: str | None = None
    method: PaymentMethod = PaymentMethod.MANUAL_SETTLEMENT


class SettleAllBody(BaseModel):
    group_id: uuid.UUID | None = None


class FriendRequestBody(BaseModel):
    to_user_id: str = Field(..., min_length=1)
    message: str | None = None


# ── Health ────────────────────────────────────────────────────────────────────


@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


# ── Groups ────────────────────────────────────────────────────────────────────


@routes.post("/groups")
async def create_group(request: web.Request) -> web.Response:
    body = GroupBody.model_validate(await _json_body(request))
    group = await groups.create_group(
        request["session"],
        body.name,
        request["user_id"],
        currency=body.currency,
        description=body.description,
    )
    return _ok(_group_json(group), status=201)


@routes.get("/groups")
async def list_groups(request: web.Request) -> web.Response:
    user_groups = await get_user_groups(request["session"], request["user_id"])
    return _ok([_group_json(g) for g in user_groups])


@routes.post("/groups/join")
async def join_group(request: web.Request) -> web.Response:
    body = JoinBody.model_validate(await _json_body(request))
    result = await groups.join_group_by_invite_code(
        request["session"],
        body.invite_code,
        request["user_id"],
        channels=request.app[CHANNELS],
    )
    return _ok(_group_json(result.value), result)


@routes.get("/groups/{group_id}")
async def get_group(request: web.Request) -> web.Response:
    group = await require_group(request["session"], _path_uuid(request, "group_id"))
    return _ok(_group_json(group))


@routes.post("/groups/{group_id}/members")
async def add_member(request: web.Request) -> web.Response:
    body = MemberBody.model_validate(await _json_body(request))
    result = await groups.add_group_member(
        request["session"],
        _path_uuid(request, "group_id"),
        body.user_id,
        channels=request.app[CHANNELS],
        role=body.role,
        invited_by=request["user_id"],
    )
    return _ok(_member_json(result.value), result, status=201)


@routes.delete("/groups/{group_id}/members/{user_id}")
async def remove_member(request: web.Request) -> web.Response:
    group_id = _path_uuid(request, "group_id")
    user_id = request.match_info["user_id"]
    if user_id == request["user_id"]:
        operation = groups.leave_group
    else:
        operation = groups.remove_group_member
    result = await operation(
        request["session"], group_id, user_id, channels=request.app[CHANNELS]
    )
    return _ok(_group_json(result.value), result)


@routes.get("/groups/{group_id}/expenses")
async def list_group_expenses(request: web.Request) -> web.Response:
    limit = request.query.get("limit")
    group_expenses = await queries.get_group_expenses(
        request["session"],
        _path_uuid(request, "group_id"),
        int(limit) if limit and limit.isdigit() else None,
    )
    return _ok([_expense_json(e) for e in group_expenses])


@routes.get("/groups/{group_id}/suggestions")
async def settlement_suggestions(request: web.Request) -> web.Response:
    suggestions = await settlements.get_group_settlement_suggestions(
        request["session"], _path_uuid(request, "group_id")
    )
    return _ok(
        [
            {"from_user_id": s.from_user_id, "to_user_id": s.to_user_id, "amount": _money(s.amount)}
            for s in suggestions
        ]
    )


# ── Expenses ──────────────────────────────────────────────────────────────────


@routes.post("/expenses")
async def add_expense(request: web.Request) -> web.Response:
    body = await _json_body(request)
    body.setdefault("paid_by", request["user_id"])
    draft = expenses.ExpenseDraft.model_validate(body)
    session = request["session"]
    result = await expenses.add_expense(session, draft, channels=request.app[CHANNELS])
    expense = await require_expense(session, result.value)
    return _ok(_expense_json(expense), result, status=201)


@routes.get("/expenses/{expense_id}")
async def get_expense(request: web.Request) -> web.Response:
    expense = await require_expense(request["session"], _path_uuid(request, "expense_id"))
    return _ok(_expense_json(expense))


@routes.put("/expenses/{expense_id}")
async def update_expense(request: web.Request) -> web.Response:
    session = request["session"]
    expense_id = _path_uuid(request, "expense_id")
    current = await require_expense(session, expense_id)
    body = await _json_body(request)
    body.setdefault("group_id", str(current.group_id))
    body.setdefault("paid_by", current.paid_by)
    draft = expenses.ExpenseDraft.model_validate(body)
    result = await expenses.update_expense(
        session,
        expense_id,
        draft,
        channels=request.app[CHANNELS],
        actor_id=request["user_id"],
    )
    return _ok(_expense_json(current), result)


@routes.delete("/expenses/{expense_id}")
async def delete_expense(request: web.Request) -> web.Response:
    result = await expenses.delete_expense(
        request["session"],
        _path_uuid(request, "expense_id"),
        request["user_id"],
        channels=request.app[CHANNELS],
    )
    return _ok(None, result)


@routes.post("/expenses/{expense_id}/settlement")
async def settle_expense(request: web.Request) -> web.Response:
    body = SettlementBody.model_validate(await _json_body(request))
    result = await settlements.update_expense_settlement(
        request["session"],
        _path_uuid(request, "expense_id"),
        body.paid,
        channels=request.app[CHANNELS],
        method=body.method,
    )
    return _ok(_expense_json(result.value), result)


# ── Payments ──────────────────────────────────────────────────────────────────


@routes.post("/payments")
async def mark_payment(request: web.Request) -> web.Response:
    body = PaymentBody.model_validate(await _json_body(request))
    result = await settlements.mark_payment_as_paid(
        request["session"],
        request["user_id"],
        body.payee_id,
        body.amount,
        channels=request.app[CHANNELS],
        group_id=body.group_id,
        description=body.description,
        method=body.method,
    )
    return _ok(_payment_json(result.value), result, status=201)


@routes.get("/payments")
async def list_payments(request: web.Request) -> web.Response:
    limit = request.query.get("limit", "20")
    payments = await queries.get_user_payments(
        request["session"], request["user_id"], int(limit) if limit.isdigit() else 20
    )
    return _ok([_payment_json(p) for p in payments])


# ── Friends ───────────────────────────────────────────────────────────────────


@routes.get("/friends")
async def list_friends(request: web.Request) -> web.Response:
    friendships = await friends.get_friends(request["session"], request["user_id"])
    return _ok([_friendship_json(f) for f in friendships])


@routes.post("/friend-requests")
async def send_friend_request(request: web.Request) -> web.Response:
    body = FriendRequestBody.model_validate(await _json_body(request))
    result = await friends.send_friend_request(
        request["session"],
        request["user_id"],
        body.to_user_id,
        channels=request.app[CHANNELS],
        message=body.message,
    )
    return _ok(_request_json(result.value), result, status=201)


async def _answer_request(request: web.Request, accept: bool) -> web.Response:
    session = request["session"]
    request_id = _path_uuid(request, "request_id")
    friend_request = await require_friend_request(session, request_id)
    if friend_request.to_user_id != request["user_id"]:
        raise web.HTTPForbidden(
            text=json.dumps({"ok": False, "error": "Not your friend request"}),
            content_type="application/json",
        )
    operation = friends.accept_friend_request if accept else friends.decline_friend_request
    result = await operation(session, request_id, channels=request.app[CHANNELS])
    return _ok(_request_json(result.value), result)


@routes.post("/friend-requests/{request_id}/accept")
async def accept_friend_request(request: web.Request) -> web.Response:
    return await _answer_request(request, accept=True)


@routes.post("/friend-requests/{request_id}/decline")
async def decline_friend_request(request: web.Request) -> web.Response:
    return await _answer_request(request, accept=False)


@routes.delete("/friends/{friend_id}")
async def remove_friend(request: web.Request) -> web.Response:
    await friends.remove_friend(request["session"], request["user_id"], request.match_info["friend_id"])
    return _ok(None)


@routes.post("/friends/{friend_id}/block")
async def block_friend(request: web.Request) -> web.Response:
    await friends.block_friend(request["session"], request["user_id"], request.match_info["friend_id"])
    return _ok(None)


@routes.post("/friends/{friend_id}/settle")
async def settle_friend(request: web.Request) -> web.Response:
    body = SettleAllBody.model_validate(await _json_body(request))
    result = await settlements.settle_all_balances_between_friends(
        request["session"],
        request["user_id"],
        request.match_info["friend_id"],
        channels=request.app[CHANNELS],
        group_id=body.group_id,
    )
    return _ok(_payment_json(result.value), result, status=201)


# ── Balances & notifications ──────────────────────────────────────────────────


@routes.get("/balances")
async def balance_summary(request: web.Request) -> web.Response:
    summary = await queries.get_balance_summary(request["session"], request["user_id"])
    return _ok(
        {
            "total_owed": _money(summary.total_owed),
            "total_owing": _money(summary.total_owing),
            "net_balance": _money(summary.net_balance),
            "details": [
                {
                    "user_id": d.user_id,
                    "balance": _money(d.balance),
                    "source": d.source,
                    "group_ids": [str(g) for g in d.group_ids],
                }
                for d in summary.details
            ],
        }
    )


@routes.get("/notifications")
async def notifications(request: web.Request) -> web.Response:
    unread_only = request.query.get("unread", "").lower() in ("1", "true", "yes")
    items = await list_notifications(request["session"], request["user_id"], unread_only=unread_only)
    return _ok([_notification_json(n) for n in items])


@routes.post("/notifications/read")
async def read_all_notifications(request: web.Request) -> web.Response:
    marked = await mark_all_notifications_read(request["session"], request["user_id"])
    return _ok({"marked": marked})


@routes.post("/notifications/{notification_id}/read")
async def read_notification(request: web.Request) -> web.Response:
    found = await mark_notification_read(
        request["session"], _path_uuid(request, "notification_id"), user_id=request["user_id"]
    )
    if not found:
        raise web.HTTPNotFound(
            text=json.dumps({"ok": False, "error": "Notification not found"}),
            content_type="application/json",
        )
    return _ok(None)
