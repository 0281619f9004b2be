"""Stream connection lifecycle: connect, receive, back off, reconnect."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from typing import TYPE_CHECKING, Protocol

from altwatch.core.error_handling import RECOVERABLE_ERRORS, log_exception
from altwatch.core.exceptions import (
    AuthenticationFailedError,
    MalformedFrameError,
    StreamDisconnectedError,
)
from altwatch.core.models import ConnectionPhase, ConnectionState
from altwatch.services.mastodon.parsing import parse_stream_payload

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from contextlib import AbstractAsyncContextManager

    from altwatch.core.models import StreamEvent
    from altwatch.services.backoff import BackoffPolicy
    from altwatch.services.mastodon.sse import SseFrame
    from altwatch.services.stats import ProcessingStats
    from altwatch.stream.processed import ProcessedSet

logger = logging.getLogger(__name__)

UPDATE_EVENT = "update"
EDIT_EVENT = "status.update"


async def _pull(iterator: AsyncIterator[SseFrame]) -> SseFrame | None:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


class StreamTransport(Protocol):
    """Something that can open the event stream."""

    def connect(self) -> AbstractAsyncContextManager[AsyncIterator[SseFrame]]: ...


class StreamConnectionManager:
    """Keep the user stream connected and hand own, new events to a callback.

    The manager never gives up on transient failures; the only fatal path
    is repeated authentication failure.
    """

    def __init__(
        self,
        transport: StreamTransport,
        on_event: Callable[[StreamEvent], None],
        account_id: str,
        processed: ProcessedSet,
        *,
        backoff: BackoffPolicy,
        idle_timeout: float,
        max_auth_failures: int,
        process_edits: bool = True,
        stats: ProcessingStats | None = None,
        listener: Callable[[ConnectionState], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._on_event = on_event
        self._account_id = account_id
        self._processed = processed
        self._backoff = backoff
        self._idle_timeout = idle_timeout
        self._max_auth_failures = max_auth_failures
        self._process_edits = process_edits
        self._stats = stats
        self._listener = listener
        self._clock = clock

        self._shutdown = asyncio.Event()
        self._state_lock = threading.Lock()
        self._state = ConnectionState()

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        with self._state_lock:
            return self._state

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Stop accepting frames and close the stream."""
        if not self._shutdown.is_set():
            logger.info("Stream shutdown requested")
        self._shutdown.set()

    def _set_state(
        self,
        phase: ConnectionPhase,
        attempt_count: int = 0,
        resume_at: float | None = None,
    ) -> None:
        state = ConnectionState(
            phase=phase,
            attempt_count=attempt_count,
            resume_at=resume_at,
        )
        with self._state_lock:
            self._state = state
        logger.debug("Connection state -> %s (attempt %s)", phase, attempt_count)
        if self._listener is not None:
            self._listener(state)

    async def run(self) -> None:
        """Run until shutdown is requested.

        Raises:
            AuthenticationFailedError: After ``max_auth_failures`` consecutive
                authentication failures.

        """
        attempt = 0
        auth_failures = 0

        while not self._shutdown.is_set():
            self._set_state(ConnectionPhase.CONNECTING, attempt)
            try:
                async with self._transport.connect() as frames:
                    auth_failures = 0
                    attempt = 0
                    self._set_state(ConnectionPhase.CONNECTED)
                    await self._receive(frames)
            except AuthenticationFailedError as exc:
                auth_failures += 1
                if auth_failures >= self._max_auth_failures:
                    logger.error(
                        "Authentication failed %s times in a row, giving up: %s",
                        auth_failures,
                        exc,
                    )
                    self._set_state(ConnectionPhase.CLOSED)
                    raise
                logger.warning(
                    "Authentication failed (%s/%s): %s",
                    auth_failures,
                    self._max_auth_failures,
                    exc,
                )
            except StreamDisconnectedError as exc:
                logger.warning("Stream disconnected: %s", exc)

            if self._shutdown.is_set():
                break

            delay = self._backoff.delay(attempt)
            attempt += 1
            self._set_state(
                ConnectionPhase.BACKOFF,
                attempt,
                resume_at=self._clock() + delay,
            )
            logger.info("Reconnecting in %.1fs (attempt %s)", delay, attempt)
            await self._wait_for_shutdown(delay)

        self._set_state(ConnectionPhase.CLOSED)
        logger.info("Stream closed")

    async def _wait_for_shutdown(self, seconds: float) -> None:
        with contextlib.suppress(TimeoutError):
            async with asyncio.timeout(seconds):
                await self._shutdown.wait()

    async def _receive(self, frames: AsyncIterator[SseFrame]) -> None:
        iterator = aiter(frames)
        while True:
            frame = await self.next_event(iterator)
            if frame is None:
                return
            self._handle_frame(frame)

    async def next_event(self, iterator: AsyncIterator[SseFrame]) -> SseFrame | None:
        """Wait for the next raw frame; None means shutdown was requested.

        Raises:
            StreamDisconnectedError: On idle timeout or end of stream.

        """
        next_frame = asyncio.ensure_future(_pull(iterator))
        shutdown = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _pending = await asyncio.wait(
                {next_frame, shutdown},
                timeout=self._idle_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (next_frame, shutdown):
                if not task.done():
                    task.cancel()
            await asyncio.gather(next_frame, shutdown, return_exceptions=True)

        if next_frame in done:
            frame = next_frame.result()
            if frame is None:
                message = "Stream ended"
                raise StreamDisconnectedError(message)
            return frame
        if shutdown in done:
            return None
        message = f"No frame received for {self._idle_timeout}s"
        raise StreamDisconnectedError(message)

    def _handle_frame(self, frame: SseFrame) -> None:
        if frame.is_heartbeat:
            logger.debug("Stream heartbeat")
            return

        if frame.event == UPDATE_EVENT:
            is_edit = False
        elif frame.event == EDIT_EVENT and self._process_edits:
            is_edit = True
        else:
            logger.debug("Ignoring %s frame", frame.event)
            return

        try:
            event = parse_stream_payload(frame.data, is_edit=is_edit)
        except MalformedFrameError as exc:
            if self._stats is not None:
                self._stats.malformed += 1
            logger.warning("Skipping malformed %s frame: %s", frame.event, exc)
            return

        if self._stats is not None:
            self._stats.events_seen += 1

        if event.author_id != self._account_id:
            if self._stats is not None:
                self._stats.foreign += 1
            return

        if not self._processed.add_if_absent(event.dedup_key):
            if self._stats is not None:
                self._stats.duplicates += 1
            logger.debug("Dropping redelivered event %s", event.dedup_key)
            return

        if self._stats is not None:
            self._stats.events_dispatched += 1
        logger.info(
            "Dispatching %s %s with %s media item(s)",
            "edit" if event.is_edit else "post",
            event.id,
            len(event.media_items),
        )
        try:
            self._on_event(event)
        except RECOVERABLE_ERRORS as exc:
            log_exception(
                logger=logger,
                message="Event handler failed",
                error=exc,
                context={"status_id": event.id},
            )
