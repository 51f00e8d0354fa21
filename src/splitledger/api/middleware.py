"""aiohttp middleware for errors, access control and session injection.

Middleware runs on every request *before* it reaches a handler, outermost
first:

- :func:`error_middleware` turns ledger errors into JSON error responses.
- :func:`auth_middleware` checks the optional bearer token and reads the
  caller's identity from ``X-User-Id``.
- :func:`session_middleware` opens one DB session per request; the request
  is one transaction, committed on success and rolled back on error.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable, Callable

from aiohttp import web
from pydantic import ValidationError

from splitledger.db.session import get_session
from splitledger.ledger.errors import (
    ConcurrentWriteLost,
    LedgerError,
    NoOutstandingBalance,
    NotFound,
    SideEffectError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

API_TOKEN: web.AppKey[str] = web.AppKey("api_token", str)
SESSION_FACTORY = web.AppKey("session_factory")

USER_HEADER = "X-User-Id"
PUBLIC_PATHS = frozenset({"/health"})

_STATUS_BY_ERROR: list[tuple[type[LedgerError], int]] = [
    (NotFound, 404),
    (ValidationFailed, 422),
    (NoOutstandingBalance, 409),
    (ConcurrentWriteLost, 409),
    (SideEffectError, 502),
]


def status_for(exc: LedgerError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


def error_response(status: int, message: str, details: dict | None = None) -> web.Response:
    body: dict = {"ok": False, "error": message}
    if details:
        body["details"] = details
    return web.json_response(body, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except LedgerError as exc:
        status = status_for(exc)
        log = logger.warning if status >= 500 else logger.info
        log("%s %s failed with %d: %s", request.method, request.path, status, exc)
        return error_response(status, exc.message, exc.details)
    except ValidationError as exc:
        errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        return error_response(422, "Invalid request body", {"errors": errors})


@web.middleware
async def auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Reject requests without a valid token or caller identity.

    If the app's ``api_token`` is empty the token check is skipped
    (useful during development).
    """
    if request.path in PUBLIC_PATHS:
        return await handler(request)

    token = request.app.get(API_TOKEN, "")
    if token:
        header = request.headers.get("Authorization", "")
        supplied = header.removeprefix("Bearer ").strip()
        if not hmac.compare_digest(supplied.encode(), token.encode()):
            logger.warning("Rejected %s %s: bad token", request.method, request.path)
            return error_response(401, "Invalid or missing API token")

    user_id = request.headers.get(USER_HEADER, "").strip()
    if not user_id:
        return error_response(401, f"Missing {USER_HEADER} header")
    request["user_id"] = user_id
    return await handler(request)


@web.middleware
async def session_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Provide ``request["session"]`` for the duration of the request."""
    if request.path in PUBLIC_PATHS:
        return await handler(request)
    async with get_session(request.app.get(SESSION_FACTORY)) as session:
        request["session"] = session
        return await handler(request)
