"""Concurrent per-item processing of stream events."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING, Protocol

from altwatch.core.config import constants
from altwatch.core.error_handling import (
    RECOVERABLE_ERRORS,
    bind_item,
    log_exception,
    log_outcome,
)
from altwatch.core.exceptions import (
    MalformedFrameError,
    MediaNotFoundError,
    ThrottledError,
    TransformError,
    TransportError,
    WriteError,
)
from altwatch.core.models import (
    CommitResult,
    ItemOutcome,
    MediaSnapshot,
    UpdateAttempt,
)
from altwatch.services.backoff import BackoffPolicy
from altwatch.services.gateway import (
    QuotaExceeded,
    Success,
    Throttled,
    TransportFailure,
)

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from altwatch.core.models import (
        DescribablePayload,
        MediaKind,
        MediaRef,
        StreamEvent,
    )
    from altwatch.pipeline.updater import ConsistencyCheckedUpdater
    from altwatch.services.gateway import RateLimitedGateway
    from altwatch.services.stats import ProcessingStats

logger = logging.getLogger(__name__)

_OUTCOME_LEVELS = {
    ItemOutcome.COMMITTED: logging.INFO,
    ItemOutcome.RACE_DETECTED: logging.INFO,
    ItemOutcome.SKIPPED: logging.INFO,
    ItemOutcome.THROTTLED: logging.INFO,
    ItemOutcome.QUOTA_EXCEEDED: logging.WARNING,
    ItemOutcome.TRANSFORM_FAILED: logging.WARNING,
    ItemOutcome.TRANSPORT_FAILED: logging.WARNING,
    ItemOutcome.WRITE_FAILED: logging.WARNING,
    ItemOutcome.FAILED: logging.ERROR,
}


class Transformer(Protocol):
    async def transform(self, media: MediaRef) -> DescribablePayload: ...


class Describer(Protocol):
    async def describe(self, payload: DescribablePayload, prompt: str) -> str: ...


class SnapshotReader(Protocol):
    async def fetch_media_snapshot(self, status_id: str, media_id: str) -> MediaSnapshot: ...


class PromptSource(Protocol):
    def build_prompt(
        self,
        text: str,
        language_hint: str | None,
        kind: MediaKind,
    ) -> str: ...


class _ItemAbandoned(Exception):
    """Internal signal carrying a terminal outcome and its reason."""

    def __init__(self, outcome: ItemOutcome, reason: str) -> None:
        self.outcome = outcome
        self.reason = reason
        super().__init__(reason)


class FanOutOrchestrator:
    """Run one task per undescribed media item, without blocking intake.

    Global parallelism is bounded by the gateway. Every pending item of an
    event gets a task; ``max_concurrent_items_per_event`` only limits how
    many of them run at once. Throttled and transport failures of the
    description call are retried up to ``max_retries`` times.
    """

    def __init__(
        self,
        *,
        transformer: Transformer,
        gateway: RateLimitedGateway,
        describer: Describer,
        updater: ConsistencyCheckedUpdater,
        platform: SnapshotReader,
        prompt_builder: PromptSource,
        stats: ProcessingStats,
        max_concurrent_items_per_event: int,
        read_timeout: float,
        backoff: BackoffPolicy | None = None,
        max_retries: int = constants.DEFAULT_DESCRIBER_MAX_RETRIES,
    ) -> None:
        if max_concurrent_items_per_event < 1:
            message = "max_concurrent_items_per_event must be at least 1"
            raise ValueError(message)
        if max_retries < 0:
            message = "max_retries must not be negative"
            raise ValueError(message)
        self._transformer = transformer
        self._gateway = gateway
        self._describer = describer
        self._updater = updater
        self._platform = platform
        self._prompts = prompt_builder
        self._stats = stats
        self._item_concurrency = max_concurrent_items_per_event
        self._read_timeout = read_timeout
        self._backoff = backoff or BackoffPolicy()
        self._max_retries = max_retries

        self._item_tasks: set[asyncio.Task[ItemOutcome]] = set()
        self._joiners: set[asyncio.Task[list[ItemOutcome]]] = set()
        self._closing = False

    @property
    def outstanding(self) -> int:
        """Number of media items still being processed."""
        return len(self._item_tasks)

    def _spawn(
        self,
        coro: Coroutine[object, object, ItemOutcome],
        name: str,
    ) -> asyncio.Task[ItemOutcome]:
        task = asyncio.create_task(coro, name=name)
        self._item_tasks.add(task)
        task.add_done_callback(self._item_tasks.discard)
        return task

    def process(self, event: StreamEvent) -> asyncio.Task[list[ItemOutcome]] | None:
        """Start processing ``event`` and return its joiner task.

        Returns None when there is nothing to do or shutdown has begun.
        """
        if self._closing:
            logger.warning("Shutting down; not processing %s", event.id)
            return None

        pending = event.pending_media()
        if not pending:
            logger.debug("Status %s has no media without description", event.id)
            return None
        if len(pending) > self._item_concurrency:
            logger.info(
                "Status %s has %s undescribed items; running %s at a time",
                event.id,
                len(pending),
                self._item_concurrency,
            )

        limit = asyncio.Semaphore(self._item_concurrency)
        prompts: dict[MediaKind, str] = {}
        tasks: list[asyncio.Task[ItemOutcome]] = []
        for media in pending:
            if media.kind not in prompts:
                prompts[media.kind] = self._prompts.build_prompt(
                    event.text_content,
                    event.language_hint,
                    media.kind,
                )
            tasks.append(
                self._spawn(
                    self._process_item(event, media, prompts[media.kind], limit),
                    name=f"altwatch-item-{event.id}-{media.id}",
                ),
            )

        joiner = asyncio.create_task(
            self._join(event, tasks),
            name=f"altwatch-event-{event.id}",
        )
        self._joiners.add(joiner)
        joiner.add_done_callback(self._joiners.discard)
        return joiner

    async def process_and_wait(self, event: StreamEvent) -> list[ItemOutcome]:
        """Process ``event`` and wait for every item to finish."""
        joiner = self.process(event)
        if joiner is None:
            return []
        return await joiner

    async def _join(
        self,
        event: StreamEvent,
        tasks: list[asyncio.Task[ItemOutcome]],
    ) -> list[ItemOutcome]:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        outcomes = [result for result in results if isinstance(result, ItemOutcome)]
        self._stats.events_completed += 1
        summary = Counter(outcome.value for outcome in outcomes)
        logger.info(
            "Finished status %s: %s",
            event.id,
            ", ".join(f"{name}={count}" for name, count in sorted(summary.items()))
            or "cancelled",
        )
        return outcomes

    async def _process_item(
        self,
        event: StreamEvent,
        media: MediaRef,
        prompt: str,
        limit: asyncio.Semaphore,
    ) -> ItemOutcome:
        bind_item(status_id=event.id, media_id=media.id, kind=str(media.kind))
        reason = ""
        try:
            async with limit:
                outcome = await self._run_item(event, media, prompt)
        except _ItemAbandoned as abandoned:
            outcome = abandoned.outcome
            reason = abandoned.reason
        except asyncio.CancelledError:
            log_outcome(
                logger=logger,
                level=logging.INFO,
                message="Processing cancelled",
                context={},
            )
            raise
        except RECOVERABLE_ERRORS as exc:
            log_exception(
                logger=logger,
                message="Unexpected error while processing media item",
                error=exc,
            )
            outcome = ItemOutcome.FAILED

        self._stats.record(outcome)
        if outcome is not ItemOutcome.FAILED:
            log_outcome(
                logger=logger,
                level=_OUTCOME_LEVELS[outcome],
                message=f"Media item {outcome.value}",
                context={"reason": reason} if reason else {},
            )
        return outcome

    async def _run_item(
        self,
        event: StreamEvent,
        media: MediaRef,
        prompt: str,
    ) -> ItemOutcome:
        baseline = await self._capture_baseline(event, media)
        if not baseline.media_present:
            raise _ItemAbandoned(ItemOutcome.SKIPPED, "media no longer present")
        if baseline.has_description:
            raise _ItemAbandoned(ItemOutcome.SKIPPED, "already described")

        payload = await self._transform(media)
        description = await self._describe(payload, prompt)
        return await self._commit(
            UpdateAttempt(
                status_id=event.id,
                target_id=media.id,
                baseline_snapshot=baseline,
                proposed_description=description,
            ),
        )

    async def _capture_baseline(self, event: StreamEvent, media: MediaRef) -> MediaSnapshot:
        try:
            async with asyncio.timeout(self._read_timeout):
                return await self._platform.fetch_media_snapshot(event.id, media.id)
        except (TimeoutError, TransportError, MalformedFrameError) as exc:
            logger.warning(
                "Live read of %s failed, using the event as baseline: %s",
                event.id,
                exc,
            )
            return MediaSnapshot.from_event(event, media)

    async def _transform(self, media: MediaRef) -> DescribablePayload:
        try:
            return await self._transformer.transform(media)
        except TransformError as exc:
            outcome = ItemOutcome.SKIPPED if exc.skipped else ItemOutcome.TRANSFORM_FAILED
            raise _ItemAbandoned(outcome, str(exc)) from exc
        except MediaNotFoundError as exc:
            raise _ItemAbandoned(ItemOutcome.TRANSFORM_FAILED, str(exc)) from exc
        except TransportError as exc:
            raise _ItemAbandoned(ItemOutcome.TRANSPORT_FAILED, str(exc)) from exc

    async def _describe(self, payload: DescribablePayload, prompt: str) -> str:
        """Call the describer through the gateway, retrying transient failures.

        A retry after ``Throttled`` goes straight back to the gateway, whose
        ``acquire`` already waits out the shared throttle deadline. A retry
        after ``TransportFailure`` first sleeps for the backoff delay.
        """
        for attempt in range(self._max_retries + 1):
            last_attempt = attempt == self._max_retries
            result = await self._gateway.call(
                lambda: self._describer.describe(payload, prompt),
            )
            match result:
                case Success(value=description):
                    return description
                case QuotaExceeded(reason=reason):
                    raise _ItemAbandoned(ItemOutcome.QUOTA_EXCEEDED, reason)
                case Throttled(retry_after=retry_after):
                    if last_attempt:
                        raise _ItemAbandoned(
                            ItemOutcome.THROTTLED,
                            f"still throttled after {attempt + 1} attempt(s)",
                        )
                    logger.info(
                        "Description throttled; retrying after the %.1fs dispatch pause",
                        retry_after,
                    )
                case TransportFailure(reason=reason):
                    if last_attempt:
                        raise _ItemAbandoned(
                            ItemOutcome.TRANSPORT_FAILED,
                            f"{reason} (after {attempt + 1} attempt(s))",
                        )
                    delay = self._backoff.delay(attempt)
                    logger.info(
                        "Description call failed (%s); retrying in %.1fs",
                        reason,
                        delay,
                    )
                    await asyncio.sleep(delay)
                case _:
                    message = f"Unexpected gateway result: {result!r}"
                    raise TypeError(message)
        message = "Description retry loop exited without a result"
        raise RuntimeError(message)

    async def _commit(self, attempt: UpdateAttempt) -> ItemOutcome:
        try:
            result = await self._updater.commit(attempt)
        except (WriteError, MediaNotFoundError) as exc:
            raise _ItemAbandoned(ItemOutcome.WRITE_FAILED, str(exc)) from exc
        except ThrottledError as exc:
            raise _ItemAbandoned(ItemOutcome.THROTTLED, str(exc)) from exc
        except TransportError as exc:
            raise _ItemAbandoned(ItemOutcome.TRANSPORT_FAILED, str(exc)) from exc

        if result is CommitResult.RACE_DETECTED:
            return ItemOutcome.RACE_DETECTED
        return ItemOutcome.COMMITTED

    async def drain(self, grace_seconds: float) -> None:
        """Stop accepting events, wait for in-flight work, then cancel the rest."""
        self._closing = True
        pending: set[asyncio.Task[object]] = {*self._item_tasks, *self._joiners}
        if not pending:
            return

        logger.info(
            "Waiting up to %.1fs for %s media item(s) to finish",
            grace_seconds,
            len(self._item_tasks),
        )
        _done, unfinished = await asyncio.wait(pending, timeout=grace_seconds)
        if not unfinished:
            return

        logger.warning("Cancelling %s unfinished task(s)", len(unfinished))
        for task in unfinished:
            task.cancel()
        await asyncio.gather(*unfinished, return_exceptions=True)
