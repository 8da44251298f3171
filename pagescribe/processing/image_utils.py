# pagescribe/processing/image_utils.py

from __future__ import annotations

import io
from pathlib import Path
from typing import Tuple

from PIL import Image, ImageOps

from pagescribe.config.constants import (
    LOCAL_JPEG_QUALITY,
    LOCAL_MAX_DIMENSION,
    LOCAL_RESIZE_THRESHOLD_BYTES,
    SUPPORTED_IMAGE_FORMATS,
)
from pagescribe.infra.logger import setup_logger

logger = setup_logger(__name__)


def handle_transparency(image: Image.Image) -> Image.Image:
    """
    Handle transparency by pasting the image onto a white background.
    Returns:
        Image.Image: The processed image.
    """
    if image.mode in ("RGBA", "LA") or (
            image.mode == "P" and "transparency" in image.info):
        image = image.convert("RGBA")
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[-1])
        return background
    return image


def fit_within(image: Image.Image, max_dimension: int) -> Image.Image:
    """Downscale so neither side exceeds ``max_dimension``, keeping aspect ratio."""
    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image
    scale = max_dimension / float(longest)
    new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return image.resize(new_size, Image.Resampling.LANCZOS)


def prepare_image_bytes(
    image_path: Path,
    resize_threshold_bytes: int = LOCAL_RESIZE_THRESHOLD_BYTES,
    max_dimension: int = LOCAL_MAX_DIMENSION,
    jpeg_quality: int = LOCAL_JPEG_QUALITY,
) -> Tuple[bytes, str]:
    """
    Read an image, shrinking it when the file is larger than the threshold.

    Files at or below ``resize_threshold_bytes`` are returned unchanged.
    Larger files are EXIF-transposed, flattened onto white, scaled to fit
    ``max_dimension`` and re-encoded as JPEG.

    Returns:
        Tuple of (image bytes, MIME type)
    """
    ext = image_path.suffix.lower()
    mime_type = SUPPORTED_IMAGE_FORMATS.get(ext)
    if not mime_type:
        raise ValueError(f"Unsupported image format: {ext}")

    original_size = image_path.stat().st_size
    if original_size <= resize_threshold_bytes:
        return image_path.read_bytes(), mime_type

    with Image.open(image_path) as img:
        img = ImageOps.exif_transpose(img)
        img = handle_transparency(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        img = fit_within(img, max_dimension)
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=jpeg_quality)

    data = buffer.getvalue()
    logger.info(
        f"Resized {image_path.name}: {original_size / 1024:.1f} KB -> "
        f"{len(data) / 1024:.1f} KB (max side {max_dimension}, quality {jpeg_quality})"
    )
    return data, "image/jpeg"
