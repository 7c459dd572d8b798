"""Image loading utilities for daytrace.

Screenshots are read from disk, downscaled for the vision model and
re-encoded as base64 JPEG data URLs for the chat-completions wire
format.
"""

from __future__ import annotations

import base64
import io
import logging
from pathlib import Path

from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIMENSION = 1568


def resize_for_mllm(image: Image.Image, max_dimension: int = DEFAULT_MAX_DIMENSION) -> Image.Image:
    """Downscale an image so its largest side fits ``max_dimension``.

    Preserves aspect ratio. Images already within bounds are returned
    unchanged.
    """
    w, h = image.size
    largest = max(w, h)
    if largest <= max_dimension:
        return image
    scale = max_dimension / largest
    return image.resize((int(w * scale), int(h * scale)), Image.LANCZOS)


def image_to_base64_jpeg(image: Image.Image, quality: int = 85) -> str:
    """Encode a PIL image as base64 JPEG."""
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def load_image_data_url(path: str | Path, max_dimension: int = DEFAULT_MAX_DIMENSION) -> str:
    """Read a screenshot file and return it as a ``data:image/jpeg`` URL.

    Raises:
        OSError: If the file is missing or is not a readable image.
    """
    with Image.open(path) as img:
        img.load()
        resized = resize_for_mllm(img, max_dimension)
        b64 = image_to_base64_jpeg(resized)
    logger.debug("Encoded %s (%d base64 chars)", path, len(b64))
    return f"data:image/jpeg;base64,{b64}"
