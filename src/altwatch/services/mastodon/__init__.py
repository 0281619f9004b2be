"""Mastodon platform access."""

from altwatch.services.mastodon.client import MastodonClient, MastodonStreamTransport
from altwatch.services.mastodon.parsing import (
    html_to_text,
    parse_status,
    parse_stream_payload,
)
from altwatch.services.mastodon.sse import SseFrame, iter_sse_frames

__all__ = [
    "MastodonClient",
    "MastodonStreamTransport",
    "SseFrame",
    "html_to_text",
    "iter_sse_frames",
    "parse_status",
    "parse_stream_payload",
]
