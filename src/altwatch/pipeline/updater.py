"""Read-verify-write protocol for description updates.

Mastodon offers no optimistic-concurrency token, so a manual edit landing
between the verifying read and the write cannot be detected. The window is
kept to one round trip.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Protocol

from altwatch.core.error_handling import log_outcome
from altwatch.core.exceptions import TransportError
from altwatch.core.models import CommitResult

if TYPE_CHECKING:
    from altwatch.core.models import MediaSnapshot, UpdateAttempt

logger = logging.getLogger(__name__)

MAX_TRACKED_STATUSES = 1000


class UpdatePlatform(Protocol):
    """Platform operations the updater needs."""

    async def fetch_media_snapshot(self, status_id: str, media_id: str) -> MediaSnapshot: ...

    async def update_description(
        self,
        status_id: str,
        media_id: str,
        description: str,
    ) -> MediaSnapshot: ...


class ConsistencyCheckedUpdater:
    """Write a description only if nobody touched the item since the baseline.

    Commits for one status are serialized, and edit markers produced by our
    own writes are remembered so sibling items of the same post are not
    mistaken for manual edits.
    """

    def __init__(self, platform: UpdatePlatform, *, write_timeout: float) -> None:
        self._platform = platform
        self._write_timeout = write_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        # status id -> {marker before our write: marker after it}
        self._own_edits: OrderedDict[str, dict[str | None, str | None]] = OrderedDict()

    def _acquire_lock(self, status_id: str) -> asyncio.Lock:
        lock = self._locks.setdefault(status_id, asyncio.Lock())
        self._lock_users[status_id] = self._lock_users.get(status_id, 0) + 1
        return lock

    def _drop_lock(self, status_id: str) -> None:
        remaining = self._lock_users[status_id] - 1
        if remaining:
            self._lock_users[status_id] = remaining
            return
        del self._lock_users[status_id]
        del self._locks[status_id]

    def _record_own_edit(
        self,
        status_id: str,
        before: str | None,
        after: str | None,
    ) -> None:
        if before == after:
            return
        chain = self._own_edits.setdefault(status_id, {})
        chain[before] = after
        self._own_edits.move_to_end(status_id)
        while len(self._own_edits) > MAX_TRACKED_STATUSES:
            self._own_edits.popitem(last=False)

    def advanced_only_by_us(
        self,
        status_id: str,
        baseline_marker: str | None,
        live_marker: str | None,
    ) -> bool:
        """Return True if our own writes explain the marker moving forward."""
        chain = self._own_edits.get(status_id, {})
        marker = baseline_marker
        seen: set[str | None] = set()
        while marker in chain and marker not in seen:
            seen.add(marker)
            marker = chain[marker]
            if marker == live_marker:
                return True
        return False

    def is_compatible(self, baseline: MediaSnapshot, live: MediaSnapshot) -> bool:
        """Compare the fields that reveal a manual edit."""
        base_present, base_description, base_marker = baseline.edit_fields()
        live_present, live_description, live_marker = live.edit_fields()
        if not (base_present and live_present):
            return False
        if base_description != live_description:
            return False
        if base_marker == live_marker:
            return True
        return self.advanced_only_by_us(live.status_id, base_marker, live_marker)

    async def commit(self, attempt: UpdateAttempt) -> CommitResult:
        """Verify the live state against the baseline and write if unchanged.

        Returns:
            ``CommitResult.COMMITTED`` when the description is stored (or
            already was), ``CommitResult.RACE_DETECTED`` when the item was
            touched in the meantime. A detected race is never retried.

        Raises:
            WriteError: The platform refused the write.
            MediaNotFoundError: The status vanished during the write.
            ThrottledError: The platform rate-limited the write.
            TransportError: A read or the write timed out or failed.

        """
        context = {"status_id": attempt.status_id, "media_id": attempt.target_id}
        lock = self._acquire_lock(attempt.status_id)
        try:
            async with lock:
                try:
                    async with asyncio.timeout(self._write_timeout):
                        live = await self._platform.fetch_media_snapshot(
                            attempt.status_id,
                            attempt.target_id,
                        )
                except TimeoutError as exc:
                    message = f"Re-fetch of {attempt.status_id} timed out"
                    raise TransportError(message) from exc

                if live.media_present and live.description == attempt.proposed_description:
                    logger.debug("Description already stored | %s", context)
                    return CommitResult.COMMITTED

                if not self.is_compatible(attempt.baseline_snapshot, live):
                    log_outcome(
                        logger=logger,
                        level=logging.INFO,
                        message="RaceConditionDetected: item changed since baseline",
                        context={
                            **context,
                            "baseline": attempt.baseline_snapshot.edit_fields(),
                            "live": live.edit_fields(),
                        },
                    )
                    return CommitResult.RACE_DETECTED

                try:
                    async with asyncio.timeout(self._write_timeout):
                        written = await self._platform.update_description(
                            attempt.status_id,
                            attempt.target_id,
                            attempt.proposed_description,
                        )
                except TimeoutError as exc:
                    message = f"Description write for {attempt.status_id} timed out"
                    raise TransportError(message) from exc

                self._record_own_edit(attempt.status_id, live.edited_at, written.edited_at)
                logger.info(
                    "Stored description for media %s on %s (%s chars)",
                    attempt.target_id,
                    attempt.status_id,
                    len(attempt.proposed_description),
                )
                return CommitResult.COMMITTED
        finally:
            self._drop_lock(attempt.status_id)
