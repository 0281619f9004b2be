"""Speech-to-text for audio and video attachments."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import litellm

from altwatch.core.exceptions import TransformError
from altwatch.services.llm.errors import PROVIDER_CALL_EXCEPTIONS

if TYPE_CHECKING:
    from altwatch.core.config import TranscriptionSettings

logger = logging.getLogger(__name__)


class Transcriber:
    """Thin wrapper over ``litellm.atranscription``."""

    def __init__(self, settings: TranscriptionSettings) -> None:
        self._settings = settings

    async def transcribe(self, data: bytes, filename: str) -> str:
        """Return the transcript of an audio or video file.

        Raises:
            TransformError: The call failed or produced no speech.

        """
        kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "file": (filename, data),
        }
        if self._settings.api_key:
            kwargs["api_key"] = self._settings.api_key
        if self._settings.base_url:
            kwargs["api_base"] = self._settings.base_url

        try:
            response = await litellm.atranscription(**kwargs)
        except PROVIDER_CALL_EXCEPTIONS as exc:
            message = f"Transcription failed for {filename}: {exc}"
            raise TransformError(message) from exc

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            message = f"No speech found in {filename}"
            raise TransformError(message, skipped=True)
        logger.debug("Transcribed %s (%s chars)", filename, len(text))
        return text
