"""Data models for altwatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import PurePosixPath
from urllib.parse import urlparse

_MIME_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".oga": "audio/ogg",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
}


class MediaKind(StrEnum):
    """Kinds of attachment we know how to describe."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"

    @classmethod
    def from_platform_type(cls, value: str | None) -> MediaKind | None:
        """Map a Mastodon attachment ``type`` to a kind.

        ``gifv`` is a looping video; ``unknown`` and anything else is not
        processable and yields None.
        """
        if not value:
            return None
        normalized = value.strip().lower()
        if normalized == "gifv":
            return cls.VIDEO
        try:
            return cls(normalized)
        except ValueError:
            return None


def guess_mime_type(url: str) -> str | None:
    """Guess a MIME type from the extension of a media URL."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    return _MIME_BY_EXTENSION.get(suffix)


def is_blank(value: str | None) -> bool:
    """Return True for None, empty or whitespace-only strings."""
    return value is None or not value.strip()


@dataclass(frozen=True, slots=True)
class MediaRef:
    """One attachment of a post, as seen when the event was received."""

    id: str
    kind: MediaKind
    source_url: str
    existing_description: str | None = None
    mime_type: str | None = None

    @property
    def needs_description(self) -> bool:
        """Only items without a (non-blank) description are processed."""
        return is_blank(self.existing_description)


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """Immutable snapshot of one of the account's posts at receipt time."""

    id: str
    author_id: str
    text_content: str
    language_hint: str | None
    media_items: tuple[MediaRef, ...]
    received_at: datetime
    edited_at: str | None = None
    is_edit: bool = False

    def pending_media(self) -> list[MediaRef]:
        """Return media items without a description, in attachment order."""
        return [media for media in self.media_items if media.needs_description]

    @property
    def dedup_key(self) -> str:
        """Key used for redelivery dedup.

        Edits are keyed by their media set so an edit that adds media is
        processed once even though the status id is already known.
        """
        if not self.is_edit:
            return self.id
        media_ids = ",".join(sorted(media.id for media in self.media_items))
        return f"{self.id}:{media_ids}"


class ConnectionPhase(StrEnum):
    """Phases of the stream connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Current connection phase plus backoff bookkeeping."""

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    attempt_count: int = 0
    resume_at: float | None = None


@dataclass(frozen=True, slots=True)
class DispatchTicket:
    """Permission to make one outbound call through the gateway."""

    ticket_id: int
    issued_at: float


@dataclass(frozen=True, slots=True)
class MediaSnapshot:
    """Live state of one attachment, as read from the platform."""

    status_id: str
    media_id: str
    media_present: bool
    description: str | None
    edited_at: str | None

    @property
    def has_description(self) -> bool:
        """Return True when the attachment carries a non-blank description."""
        return not is_blank(self.description)

    def edit_fields(self) -> tuple[bool, str, str | None]:
        """Fields that reveal a manual edit since the snapshot was taken."""
        description = self.description
        if description is None or not description.strip():
            description = ""
        return (self.media_present, description, self.edited_at)

    @classmethod
    def from_event(cls, event: StreamEvent, media: MediaRef) -> MediaSnapshot:
        """Build a snapshot from the event payload itself."""
        return cls(
            status_id=event.id,
            media_id=media.id,
            media_present=True,
            description=media.existing_description,
            edited_at=event.edited_at,
        )


@dataclass(frozen=True, slots=True)
class UpdateAttempt:
    """One write-back transaction for a generated description."""

    status_id: str
    target_id: str
    baseline_snapshot: MediaSnapshot
    proposed_description: str


@dataclass(frozen=True, slots=True)
class ImagePayload:
    """Transform output for images: bytes ready for a vision model."""

    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True, slots=True)
class TextPayload:
    """Transform output for audio and video: a transcript."""

    text: str


DescribablePayload = ImagePayload | TextPayload


@dataclass(slots=True)
class StatusSource:
    """Editable fields of a status, needed to rewrite it without changes."""

    text: str
    spoiler_text: str = ""
    sensitive: bool = False
    language: str | None = None
    media_ids: list[str] = field(default_factory=list)


class ItemOutcome(StrEnum):
    """Terminal result of processing one media item."""

    COMMITTED = "committed"
    RACE_DETECTED = "race_detected"
    SKIPPED = "skipped"
    QUOTA_EXCEEDED = "quota_exceeded"
    THROTTLED = "throttled"
    TRANSFORM_FAILED = "transform_failed"
    TRANSPORT_FAILED = "transport_failed"
    WRITE_FAILED = "write_failed"
    FAILED = "failed"


class CommitResult(StrEnum):
    """Result of a consistency-checked write."""

    COMMITTED = "committed"
    RACE_DETECTED = "race_detected"
