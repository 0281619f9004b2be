"""Entrypoint module for wiring and running the service."""

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from altwatch.core.config import (
    HttpxClientOptions,
    Settings,
    get_config,
    create_httpx_client,
)
from altwatch.core.error_handling import RECOVERABLE_ERRORS, log_exception
from altwatch.core.exceptions import TransportError
from altwatch.pipeline.backfill import run_backfill
from altwatch.pipeline.orchestrator import FanOutOrchestrator
from altwatch.pipeline.updater import ConsistencyCheckedUpdater
from altwatch.server import start_server
from altwatch.services.backoff import BackoffPolicy
from altwatch.services.gateway import RateLimitedGateway
from altwatch.services.llm import DescriptionGenerator
from altwatch.services.mastodon import MastodonClient, MastodonStreamTransport
from altwatch.services.media import MediaTransformer
from altwatch.services.prompts import PromptBuilder
from altwatch.services.stats import ProcessingStats
from altwatch.stream import ProcessedSet, StreamConnectionManager

if TYPE_CHECKING:
    from aiohttp.web import AppRunner

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "LiteLLM", "aiohttp.access")


def configure_logging(level: str) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@dataclass(slots=True)
class Application:
    """Long-lived components of one running service."""

    settings: Settings
    http_client: httpx.AsyncClient
    client: MastodonClient
    backoff: BackoffPolicy
    gateway: RateLimitedGateway
    processed: ProcessedSet
    stats: ProcessingStats
    orchestrator: FanOutOrchestrator
    shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    account_id: str | None = None
    manager: StreamConnectionManager | None = None
    server_runner: "AppRunner | None" = None

    def request_shutdown(self) -> None:
        """Ask every long-running loop to stop."""
        self.shutdown_event.set()
        if self.manager is not None:
            self.manager.request_shutdown()

    def status_snapshot(self) -> dict[str, object]:
        """Data served on ``/status``."""
        state = self.manager.state if self.manager is not None else None
        gateway_stats = self.gateway.stats
        return {
            "account_id": self.account_id,
            "connection": {
                "phase": str(state.phase) if state else "disconnected",
                "attempt_count": state.attempt_count if state else 0,
            },
            "processed_set_size": len(self.processed),
            "outstanding_items": self.orchestrator.outstanding,
            "gateway": {
                "outstanding": self.gateway.outstanding,
                "issued": gateway_stats.issued,
                "succeeded": gateway_stats.succeeded,
                "throttled": gateway_stats.throttled,
                "quota_exceeded": gateway_stats.quota_exceeded,
                "transport_failures": gateway_stats.transport_failures,
            },
            "stats": self.stats.as_dict(),
        }


def build_application(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> Application:
    """Create every component without touching the network."""
    if http_client is None:
        http_client = create_httpx_client(
            HttpxClientOptions(timeout=settings.mastodon.request_timeout_seconds),
        )

    backoff = BackoffPolicy(
        base=settings.backoff.base_seconds,
        cap=settings.backoff.max_seconds,
        jitter=settings.backoff.jitter,
    )
    client = MastodonClient(settings.mastodon, http_client)
    gateway = RateLimitedGateway(
        max_concurrent=settings.gateway.max_concurrent,
        min_interval=settings.gateway.min_interval_seconds,
        backoff=backoff,
        call_timeout=settings.describer.timeout_seconds,
    )
    stats = ProcessingStats()
    orchestrator = FanOutOrchestrator(
        transformer=MediaTransformer(
            http_client,
            settings.media,
            settings.transcription,
        ),
        gateway=gateway,
        describer=DescriptionGenerator(settings.describer),
        updater=ConsistencyCheckedUpdater(
            client,
            write_timeout=settings.mastodon.request_timeout_seconds,
        ),
        platform=client,
        prompt_builder=PromptBuilder(
            settings.prompts,
            image_model=settings.describer.model,
            text_model=settings.describer.text_model,
        ),
        stats=stats,
        max_concurrent_items_per_event=settings.pipeline.max_concurrent_items_per_event,
        read_timeout=settings.mastodon.request_timeout_seconds,
        backoff=backoff,
        max_retries=settings.describer.max_retries,
    )
    return Application(
        settings=settings,
        http_client=http_client,
        client=client,
        backoff=backoff,
        gateway=gateway,
        processed=ProcessedSet(settings.pipeline.processed_set_capacity),
        stats=stats,
        orchestrator=orchestrator,
    )


async def _resolve_account_id(app: Application) -> str | None:
    """Verify credentials, retrying transient failures until shutdown.

    Authentication failures propagate immediately.
    """
    attempt = 0
    while not app.shutdown_event.is_set():
        try:
            return await app.client.verify_credentials()
        except TransportError as exc:
            delay = app.backoff.delay(attempt)
            attempt += 1
            logger.warning(
                "Could not reach %s (%s); retrying in %.1fs",
                app.settings.mastodon.instance_url,
                exc,
                delay,
            )
            with contextlib.suppress(TimeoutError):
                async with asyncio.timeout(delay):
                    await app.shutdown_event.wait()
    return None


async def _backfill(app: Application) -> None:
    if app.account_id is None:
        return
    try:
        await run_backfill(
            app.client,
            app.orchestrator,
            app.processed,
            app.account_id,
            count=app.settings.mastodon.backfill_count,
            pause_seconds=app.settings.mastodon.backfill_pause_seconds,
            shutdown=app.shutdown_event,
        )
    except RECOVERABLE_ERRORS as exc:
        log_exception(logger=logger, message="Backfill failed", error=exc)


def _install_signal_handlers(app: Application) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, app.request_shutdown)


async def run(app: Application) -> None:
    """Connect, backfill, and follow the stream until shutdown.

    Raises:
        AuthenticationFailedError: The access token was rejected.

    """
    _install_signal_handlers(app)
    settings = app.settings
    backfill_task: asyncio.Task[None] | None = None
    try:
        app.server_runner = await start_server(
            app.status_snapshot,
            host=settings.host,
            port=settings.port,
        )
        app.account_id = await _resolve_account_id(app)
        if app.account_id is None:
            return

        app.manager = StreamConnectionManager(
            MastodonStreamTransport(settings.mastodon, app.http_client),
            app.orchestrator.process,
            app.account_id,
            app.processed,
            backoff=app.backoff,
            idle_timeout=settings.mastodon.idle_timeout_seconds,
            max_auth_failures=settings.mastodon.max_auth_failures,
            process_edits=settings.mastodon.process_edits,
            stats=app.stats,
        )
        if app.shutdown_event.is_set():
            app.manager.request_shutdown()

        if settings.mastodon.backfill_count:
            backfill_task = asyncio.create_task(
                _backfill(app),
                name="altwatch-backfill",
            )
        await app.manager.run()
    finally:
        # Ctrl+C typically cancels the main task; shield the drain so
        # in-flight items get their grace period.
        await asyncio.shield(shutdown(app))
        if backfill_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await backfill_task


async def shutdown(app: Application) -> None:
    """Drain in-flight work and release resources.

    This is safe to call multiple times.
    """
    app.request_shutdown()
    await app.orchestrator.drain(app.settings.pipeline.shutdown_grace_seconds)

    if not app.http_client.is_closed:
        with contextlib.suppress(httpx.HTTPError, RuntimeError):
            await app.http_client.aclose()

    if app.server_runner is not None:
        with contextlib.suppress(RuntimeError, OSError):
            await app.server_runner.cleanup()
        app.server_runner = None


async def main(config_filename: str | None = None) -> None:
    """Load configuration and run the service."""
    settings = Settings.from_mapping(get_config(config_filename))
    configure_logging(settings.log_level)
    logger.info(
        "Starting altwatch for %s with model %s",
        settings.mastodon.instance_url,
        settings.describer.model,
    )
    app = build_application(settings)
    await run(app)
