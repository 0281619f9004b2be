"""Rate-limited gateway for calls to the description service.

Concurrency alone does not bound request rate, so the gateway combines a
counting semaphore (bounded parallelism) with a minimum interval between
ticket issuances (bounded throughput). Issuance is serialized by a single
lock guarding the last-issued timestamp and the throttle deadline.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from altwatch.core.exceptions import (
    QuotaExceededError,
    ThrottledError,
    TransportError,
)
from altwatch.core.models import DispatchTicket
from altwatch.services.backoff import BackoffPolicy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """The call completed and produced a value."""

    value: T


@dataclass(frozen=True, slots=True)
class Throttled:
    """The provider asked us to slow down; transient."""

    retry_after: float


@dataclass(frozen=True, slots=True)
class QuotaExceeded:
    """A token or cost ceiling was hit; terminal for the item."""

    reason: str


@dataclass(frozen=True, slots=True)
class TransportFailure:
    """Timeout or connection failure; retriable by the caller's policy."""

    reason: str


GatewayResult = Success[T] | Throttled | QuotaExceeded | TransportFailure


@dataclass(slots=True)
class GatewayStats:
    """Counters describing gateway activity."""

    issued: int = 0
    succeeded: int = 0
    throttled: int = 0
    quota_exceeded: int = 0
    transport_failures: int = 0
    max_outstanding: int = 0


class RateLimitedGateway:
    """Throttle outbound calls by concurrency and minimum interval."""

    def __init__(
        self,
        *,
        max_concurrent: int,
        min_interval: float,
        backoff: BackoffPolicy | None = None,
        call_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a gateway.

        Args:
            max_concurrent: Maximum number of tickets outstanding at once.
            min_interval: Minimum seconds between consecutive issuances.
            backoff: Policy used when a throttle response has no retry hint.
            call_timeout: Timeout applied to each wrapped call, if any.
            clock: Monotonic clock, injectable for tests.

        """
        if max_concurrent < 1:
            message = "max_concurrent must be at least 1"
            raise ValueError(message)
        if min_interval < 0:
            message = "min_interval must not be negative"
            raise ValueError(message)

        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._backoff = backoff or BackoffPolicy()
        self._call_timeout = call_timeout
        self._clock = clock

        self._slots = asyncio.Semaphore(max_concurrent)
        self._issue_lock = asyncio.Lock()
        self._last_issued: float | None = None
        self._throttled_until = 0.0
        self._consecutive_throttles = 0
        self._outstanding: set[int] = set()
        self._ticket_ids = itertools.count(1)
        self.stats = GatewayStats()

    @property
    def outstanding(self) -> int:
        """Number of tickets currently issued and not yet released."""
        return len(self._outstanding)

    @property
    def throttled_until(self) -> float:
        """Monotonic time before which no ticket is issued."""
        return self._throttled_until

    def _seconds_until_issuable(self, now: float) -> float:
        earliest = self._throttled_until
        if self._last_issued is not None:
            earliest = max(earliest, self._last_issued + self.min_interval)
        return earliest - now

    async def acquire(self) -> DispatchTicket:
        """Wait for a free slot and the pacing gate, then issue a ticket."""
        await self._slots.acquire()
        issued = False
        try:
            async with self._issue_lock:
                # Re-check after every sleep: a throttle response from another
                # caller may have pushed the deadline while we waited.
                while (wait := self._seconds_until_issuable(self._clock())) > 0:
                    logger.debug("Dispatch pacing: waiting %.3fs", wait)
                    await asyncio.sleep(wait)

                now = self._clock()
                self._last_issued = now
                ticket = DispatchTicket(ticket_id=next(self._ticket_ids), issued_at=now)
                self._outstanding.add(ticket.ticket_id)
                self.stats.issued += 1
                self.stats.max_outstanding = max(
                    self.stats.max_outstanding,
                    len(self._outstanding),
                )
                issued = True
        finally:
            if not issued:
                self._slots.release()
        return ticket

    def release(self, ticket: DispatchTicket) -> None:
        """Return the ticket's concurrency slot."""
        if ticket.ticket_id not in self._outstanding:
            logger.warning("Ignoring release of unknown ticket %s", ticket.ticket_id)
            return
        self._outstanding.discard(ticket.ticket_id)
        self._slots.release()

    def register_throttle(self, retry_after: float | None) -> float:
        """Delay the next issuance for every caller.

        Uses the provider's hint when present, otherwise the backoff policy
        keyed by the number of consecutive throttles.

        Returns:
            The applied delay in seconds.

        """
        if retry_after is None:
            delay = self._backoff.delay(self._consecutive_throttles)
        else:
            delay = max(retry_after, 0.0)
        self._consecutive_throttles += 1
        self._throttled_until = max(self._throttled_until, self._clock() + delay)
        logger.warning(
            "Description service throttled us; pausing dispatch for %.1fs",
            delay,
        )
        return delay

    async def call(self, request: Callable[[], Awaitable[T]]) -> GatewayResult[T]:
        """Run ``request`` under a ticket and classify the outcome.

        Throttling, quota and transport failures are reported as results
        rather than raised. Other exceptions propagate to the caller.
        """
        ticket = await self.acquire()
        try:
            async with asyncio.timeout(self._call_timeout):
                value = await request()
        except ThrottledError as exc:
            self.stats.throttled += 1
            return Throttled(retry_after=self.register_throttle(exc.retry_after))
        except QuotaExceededError as exc:
            self.stats.quota_exceeded += 1
            return QuotaExceeded(reason=str(exc) or type(exc).__name__)
        except TimeoutError:
            self.stats.transport_failures += 1
            return TransportFailure(
                reason=f"Description call timed out after {self._call_timeout}s",
            )
        except TransportError as exc:
            self.stats.transport_failures += 1
            return TransportFailure(reason=str(exc) or type(exc).__name__)
        finally:
            self.release(ticket)

        self._consecutive_throttles = 0
        self.stats.succeeded += 1
        return Success(value)
