"""Health-check and status server for altwatch."""

import logging
import os
from collections.abc import Awaitable, Callable

from aiohttp import web

from altwatch.core.error_handling import RECOVERABLE_ERRORS, log_exception

logger = logging.getLogger(__name__)

RequestHandler = Callable[[web.Request], Awaitable[web.StreamResponse]]
StatusProvider = Callable[[], dict[str, object]]
STATUS_PROVIDER_KEY = web.AppKey("status_provider", StatusProvider)


@web.middleware
async def _error_middleware(
    request: web.Request,
    handler: RequestHandler,
) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except RECOVERABLE_ERRORS as exc:
        log_exception(
            logger=logger,
            message="Unhandled status server error",
            error=exc,
            context={
                "method": request.method,
                "path": request.path,
            },
        )
        return web.Response(status=500, text="Internal server error")


async def health_check(_request: web.Request) -> web.Response:
    """Return a basic liveness response."""
    return web.Response(text="I'm alive")


async def status(request: web.Request) -> web.Response:
    """Return connection state and processing counters as JSON."""
    provider = request.app[STATUS_PROVIDER_KEY]
    return web.json_response(provider())


def create_app(status_provider: StatusProvider) -> web.Application:
    """Build the aiohttp application."""
    app = web.Application(middlewares=[_error_middleware])
    app[STATUS_PROVIDER_KEY] = status_provider
    app.add_routes([web.get("/", health_check), web.get("/status", status)])
    return app


async def start_server(
    status_provider: StatusProvider,
    *,
    host: str | None,
    port: int,
) -> web.AppRunner:
    """Start the HTTP server.

    ``HOST`` and ``PORT`` environment variables override the configured
    values. Returns the underlying aiohttp runner so callers can clean it up
    on shutdown.
    """
    runner = web.AppRunner(create_app(status_provider))
    await runner.setup()
    bind_port = int(os.environ.get("PORT", str(port)))
    bind_host = os.environ.get("HOST", host)
    site = web.TCPSite(runner, bind_host, bind_port)
    await site.start()
    logger.info("Status server listening on %s:%s", bind_host or "0.0.0.0", bind_port)
    return runner
