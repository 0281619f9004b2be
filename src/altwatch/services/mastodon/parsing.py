"""Decode Mastodon status JSON into domain models."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from bs4 import BeautifulSoup

from altwatch.core.exceptions import MalformedFrameError
from altwatch.core.models import (
    MediaKind,
    MediaRef,
    MediaSnapshot,
    StatusSource,
    StreamEvent,
    guess_mime_type,
)

_BLOCK_TAGS = ("p", "br", "li")


def html_to_text(content: str) -> str:
    """Convert status HTML into plain text, keeping paragraph breaks."""
    if not content:
        return ""
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup.find_all(_BLOCK_TAGS):
        if tag.name == "br":
            tag.replace_with("\n")
        else:
            tag.append("\n")
    lines = (line.strip() for line in soup.get_text().splitlines())
    return "\n".join(line for line in lines if line)


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str) or not value:
        message = f"Status payload is missing '{key}'"
        raise MalformedFrameError(message)
    return value


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_media_attachment(raw: object) -> MediaRef | None:
    """Decode one attachment, or None when its kind is not describable."""
    if not isinstance(raw, dict):
        message = "Media attachment is not an object"
        raise MalformedFrameError(message)
    kind = MediaKind.from_platform_type(raw.get("type"))
    url = _optional_str(raw.get("url")) or _optional_str(raw.get("remote_url"))
    if kind is None or url is None:
        return None
    return MediaRef(
        id=_require_str(raw, "id"),
        kind=kind,
        source_url=url,
        existing_description=raw.get("description")
        if isinstance(raw.get("description"), str)
        else None,
        mime_type=guess_mime_type(url),
    )


def parse_status(
    payload: object,
    *,
    is_edit: bool = False,
    received_at: datetime | None = None,
) -> StreamEvent:
    """Build a StreamEvent from a status entity.

    Boosts carry someone else's media, which we cannot edit, so they are
    reported without media.

    Raises:
        MalformedFrameError: Required fields are missing or mistyped.

    """
    if not isinstance(payload, dict):
        message = "Status payload is not an object"
        raise MalformedFrameError(message)

    account = payload.get("account")
    if not isinstance(account, dict):
        message = "Status payload has no account"
        raise MalformedFrameError(message)

    attachments = payload.get("media_attachments") or []
    if not isinstance(attachments, list):
        message = "Status media_attachments is not a list"
        raise MalformedFrameError(message)

    media_items: tuple[MediaRef, ...] = ()
    if payload.get("reblog") is None:
        media_items = tuple(
            media
            for media in (parse_media_attachment(raw) for raw in attachments)
            if media is not None
        )

    content = payload.get("content")
    return StreamEvent(
        id=_require_str(payload, "id"),
        author_id=_require_str(account, "id"),
        text_content=html_to_text(content if isinstance(content, str) else ""),
        language_hint=_optional_str(payload.get("language")),
        media_items=media_items,
        received_at=received_at or datetime.now(UTC),
        edited_at=_optional_str(payload.get("edited_at")),
        is_edit=is_edit,
    )


def parse_stream_payload(data: str, *, is_edit: bool = False) -> StreamEvent:
    """Decode the JSON ``data`` of an ``update``/``status.update`` frame."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        message = f"Stream frame is not valid JSON: {exc}"
        raise MalformedFrameError(message) from exc
    return parse_status(payload, is_edit=is_edit)


def snapshot_from_status(payload: object, media_id: str) -> MediaSnapshot:
    """Read the live state of one attachment out of a status entity."""
    if not isinstance(payload, dict):
        message = "Status payload is not an object"
        raise MalformedFrameError(message)

    status_id = _require_str(payload, "id")
    description: str | None = None
    present = False
    for raw in payload.get("media_attachments") or []:
        if isinstance(raw, dict) and str(raw.get("id")) == media_id:
            present = True
            value = raw.get("description")
            description = value if isinstance(value, str) else None
            break

    return MediaSnapshot(
        status_id=status_id,
        media_id=media_id,
        media_present=present,
        description=description,
        edited_at=_optional_str(payload.get("edited_at")),
    )


def parse_status_source(
    source_payload: object,
    status_payload: object,
) -> StatusSource:
    """Combine ``/source`` and the status entity into editable fields."""
    if not isinstance(source_payload, dict) or not isinstance(status_payload, dict):
        message = "Status source payload is not an object"
        raise MalformedFrameError(message)

    text = source_payload.get("text")
    spoiler = source_payload.get("spoiler_text")
    media_ids = [
        str(raw["id"])
        for raw in status_payload.get("media_attachments") or []
        if isinstance(raw, dict) and raw.get("id") is not None
    ]
    return StatusSource(
        text=text if isinstance(text, str) else "",
        spoiler_text=spoiler if isinstance(spoiler, str) else "",
        sensitive=bool(status_payload.get("sensitive")),
        language=_optional_str(status_payload.get("language")),
        media_ids=media_ids,
    )
