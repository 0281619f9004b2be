"""Image preparation for vision models."""

from __future__ import annotations

import io

from PIL import Image, ImageOps

from altwatch.core.exceptions import TransformError

JPEG_QUALITY = 85


def prepare_image(data: bytes, max_dimension: int) -> bytes:
    """Downscale an image to fit ``max_dimension`` and re-encode it as JPEG.

    Animated images are reduced to their first frame. Runs synchronously;
    call it through ``asyncio.to_thread``.

    Raises:
        TransformError: The bytes are not a decodable image.

    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.seek(0)
            frame = ImageOps.exif_transpose(img) or img
            frame = frame.convert("RGB")
            frame.thumbnail((max_dimension, max_dimension))
            output = io.BytesIO()
            frame.save(output, format="JPEG", quality=JPEG_QUALITY)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        message = f"Could not decode image: {exc}"
        raise TransformError(message) from exc
    return output.getvalue()
