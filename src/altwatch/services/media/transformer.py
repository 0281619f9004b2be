"""Route media items to the transform that makes them describable."""

from __future__ import annotations

import asyncio
import logging
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from altwatch.core.exceptions import TransformError
from altwatch.core.models import ImagePayload, MediaKind, TextPayload
from altwatch.services.media.download import BYTES_PER_MB, download_media
from altwatch.services.media.image import prepare_image
from altwatch.services.media.transcription import Transcriber

if TYPE_CHECKING:
    import httpx

    from altwatch.core.config import MediaSettings, TranscriptionSettings
    from altwatch.core.models import DescribablePayload, MediaRef

logger = logging.getLogger(__name__)


class MediaTransformer:
    """Download a media item and convert it into a describable payload.

    Images are downscaled and re-encoded off the event loop. Audio and video
    are transcribed when transcription is enabled and skipped otherwise.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        media_settings: MediaSettings,
        transcription_settings: TranscriptionSettings,
        *,
        transcriber: Transcriber | None = None,
    ) -> None:
        self._client = client
        self._media = media_settings
        self._transcription = transcription_settings
        self._transcriber = transcriber or Transcriber(transcription_settings)

    @property
    def max_bytes(self) -> int:
        """Download ceiling in bytes."""
        return int(self._media.max_size_mb * BYTES_PER_MB)

    async def transform(self, media: MediaRef) -> DescribablePayload:
        """Produce the payload for ``media`` within the transform timeout.

        Raises:
            TransformError: The item cannot be transformed, or is skipped.
            MediaNotFoundError: The file disappeared from the media host.
            TransportError: The download failed transiently.

        """
        if media.kind is not MediaKind.IMAGE and not self._transcription.enabled:
            message = f"Transcription disabled; skipping {media.kind} {media.id}"
            raise TransformError(message, skipped=True)

        try:
            async with asyncio.timeout(self._media.transform_timeout_seconds):
                if media.kind is MediaKind.IMAGE:
                    return await self._transform_image(media)
                return await self._transform_recording(media)
        except TimeoutError as exc:
            message = (
                f"Transform of {media.id} exceeded "
                f"{self._media.transform_timeout_seconds}s"
            )
            raise TransformError(message) from exc

    async def _transform_image(self, media: MediaRef) -> ImagePayload:
        data, _content_type = await download_media(
            self._client,
            media.source_url,
            max_bytes=self.max_bytes,
        )
        jpeg = await asyncio.to_thread(
            prepare_image,
            data,
            self._media.resize_max_dimension,
        )
        logger.debug(
            "Prepared image %s: %s -> %s bytes",
            media.id,
            len(data),
            len(jpeg),
        )
        return ImagePayload(data=jpeg)

    async def _transform_recording(self, media: MediaRef) -> TextPayload:
        data, _content_type = await download_media(
            self._client,
            media.source_url,
            max_bytes=self.max_bytes,
        )
        filename = PurePosixPath(urlparse(media.source_url).path).name or media.id
        transcript = await self._transcriber.transcribe(data, filename)
        return TextPayload(text=transcript)
