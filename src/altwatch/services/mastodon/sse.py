"""Server-sent events framing for the streaming API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SseFrame:
    """One dispatched server-sent event.

    Heartbeats (``:thump`` comment lines) are surfaced as frames with
    ``event="heartbeat"`` so idle detection sees them.
    """

    event: str
    data: str

    @property
    def is_heartbeat(self) -> bool:
        """Return True for keep-alive comments."""
        return self.event == HEARTBEAT_EVENT


HEARTBEAT_EVENT = "heartbeat"
DEFAULT_EVENT = "message"


async def iter_sse_frames(lines: AsyncIterator[str]) -> AsyncIterator[SseFrame]:
    """Group raw SSE lines into frames.

    A blank line dispatches the pending frame. Multiple ``data:`` lines are
    joined with newlines, as the SSE format requires.
    """
    event_type = ""
    data_lines: list[str] = []

    async for raw_line in lines:
        line = raw_line.rstrip("\n").rstrip("\r")

        if not line:
            if data_lines or event_type:
                yield SseFrame(
                    event=event_type or DEFAULT_EVENT,
                    data="\n".join(data_lines),
                )
            event_type = ""
            data_lines = []
            continue

        if line.startswith(":"):
            yield SseFrame(event=HEARTBEAT_EVENT, data=line[1:].strip())
            continue

        field_name, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field_name == "event":
            event_type = value.strip()
        elif field_name == "data":
            data_lines.append(value)
        else:
            logger.debug("Ignoring SSE field %r", field_name)

    if data_lines:
        yield SseFrame(event=event_type or DEFAULT_EVENT, data="\n".join(data_lines))
