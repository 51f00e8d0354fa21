"""HTTP API factory and entry point.

Builds the aiohttp :class:`~aiohttp.web.Application`, wires middleware and
the side channels, and exposes :func:`run_server` to serve it.
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from splitledger.api.handlers import CHANNELS, routes
from splitledger.api.middleware import (
    API_TOKEN,
    SESSION_FACTORY,
    auth_middleware,
    error_middleware,
    session_middleware,
)
from splitledger.config import settings
from splitledger.db.session import async_session_factory, engine
from splitledger.notify.channels import SideChannels, build_side_channels

logger = logging.getLogger(__name__)


def create_app(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    channels: SideChannels | None = None,
    api_token: str | None = None,
) -> web.Application:
    """Build the aiohttp application.

    Middleware order (outermost first):
    1. Error mapping (ledger errors become JSON responses)
    2. Access control (token and ``X-User-Id``)
    3. DB session per request
    """
    app = web.Application(middlewares=[error_middleware, auth_middleware, session_middleware])
    app[SESSION_FACTORY] = session_factory or async_session_factory
    app[CHANNELS] = channels or build_side_channels(settings)
    app[API_TOKEN] = settings.api_token if api_token is None else api_token
    app.add_routes(routes)
    return app


async def run_server() -> None:
    """Serve the API until cancelled.

    This is the main coroutine invoked from ``__main__.py``.
    """
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = create_app()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.api_host, settings.api_port)
    await site.start()
    logger.info("SplitLedger API running on http://%s:%d", settings.api_host, settings.api_port)
    if not settings.api_token:
        logger.warning("API_TOKEN is empty; requests are not authenticated")

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("SplitLedger shutting down, disposing DB engine")
        await runner.cleanup()
        await engine.dispose()
