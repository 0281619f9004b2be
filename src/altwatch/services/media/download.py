"""Bounded media downloads."""

from __future__ import annotations

import logging

import httpx

from altwatch.core.exceptions import MediaNotFoundError, TransformError, TransportError
from altwatch.services.http import HTTP_NOT_FOUND, HTTP_SERVER_ERROR_MIN

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
HTTP_GONE = 410


async def download_media(
    client: httpx.AsyncClient,
    url: str,
    *,
    max_bytes: int,
) -> tuple[bytes, str | None]:
    """Download ``url`` into memory, refusing bodies over ``max_bytes``.

    Returns:
        The body and the response's content type, if any.

    Raises:
        MediaNotFoundError: The file is gone (404/410).
        TransformError: The file is too large or the server refused it.
        TransportError: Connection failures and 5xx responses.

    """
    try:
        async with client.stream("GET", url) as response:
            if response.status_code in {HTTP_NOT_FOUND, HTTP_GONE}:
                message = f"Media file is gone ({response.status_code}): {url}"
                raise MediaNotFoundError(message)
            if response.status_code >= HTTP_SERVER_ERROR_MIN:
                message = f"Media host returned {response.status_code}: {url}"
                raise TransportError(message)
            if not response.is_success:
                message = f"Media download refused ({response.status_code}): {url}"
                raise TransformError(message)

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                message = f"Media file too large ({declared} bytes): {url}"
                raise TransformError(message)

            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > max_bytes:
                    message = f"Media file exceeds {max_bytes} bytes: {url}"
                    raise TransformError(message)
                chunks.append(chunk)

            content_type = response.headers.get("content-type")
    except httpx.RequestError as exc:
        message = f"Media download failed: {exc!r}"
        raise TransportError(message) from exc

    logger.debug("Downloaded %s bytes from %s", received, url)
    return b"".join(chunks), content_type
