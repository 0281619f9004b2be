"""Media download and transform services."""

from altwatch.services.media.download import download_media
from altwatch.services.media.image import prepare_image
from altwatch.services.media.transcription import Transcriber
from altwatch.services.media.transformer import MediaTransformer

__all__ = ["MediaTransformer", "Transcriber", "download_media", "prepare_image"]
