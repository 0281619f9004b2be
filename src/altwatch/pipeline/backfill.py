"""Describe media on the account's most recent statuses at startup."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Protocol

from altwatch.core.exceptions import AltwatchError

if TYPE_CHECKING:
    from altwatch.core.models import StreamEvent
    from altwatch.pipeline.orchestrator import FanOutOrchestrator
    from altwatch.stream.processed import ProcessedSet

logger = logging.getLogger(__name__)


class RecentStatusSource(Protocol):
    async def fetch_recent_statuses(self, account_id: str, limit: int) -> list[StreamEvent]: ...


async def run_backfill(
    source: RecentStatusSource,
    orchestrator: FanOutOrchestrator,
    processed: ProcessedSet,
    account_id: str,
    *,
    count: int,
    pause_seconds: float,
    shutdown: asyncio.Event,
) -> int:
    """Process up to ``count`` recent own statuses, one at a time.

    Statuses are registered in the processed set first, so a stream
    redelivery of the same status is not handled twice. Stops early when
    ``shutdown`` is set.

    Returns:
        Number of statuses that had media to describe.

    """
    if count <= 0:
        logger.info("Backfill disabled")
        return 0

    try:
        events = await source.fetch_recent_statuses(account_id, count)
    except AltwatchError as exc:
        logger.warning("Could not fetch statuses for backfill: %s", exc)
        return 0

    candidates = [
        event
        for event in events
        if event.pending_media() and processed.add_if_absent(event.dedup_key)
    ]
    logger.info(
        "Backfill: %s of %s recent statuses need descriptions",
        len(candidates),
        len(events),
    )

    handled = 0
    for index, event in enumerate(candidates):
        if shutdown.is_set():
            break
        logger.info("Backfill %s/%s: status %s", index + 1, len(candidates), event.id)
        await orchestrator.process_and_wait(event)
        handled += 1

        if index < len(candidates) - 1:
            with contextlib.suppress(TimeoutError):
                async with asyncio.timeout(pause_seconds):
                    await shutdown.wait()

    logger.info("Backfill finished after %s status(es)", handled)
    return handled
