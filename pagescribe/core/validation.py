"""Input image validation.

Turns an ordered list of paths into ImageDescriptors, rejecting anything the
providers cannot accept. Validation runs before any network traffic.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Union

from pagescribe.config.constants import (
    MAX_FILE_SIZE_BYTES,
    MAX_TOTAL_IMAGES,
    SUPPORTED_IMAGE_EXTENSIONS,
)
from pagescribe.core.errors import ImageValidationError
from pagescribe.core.models import ImageDescriptor
from pagescribe.infra.logger import setup_logger

logger = setup_logger(__name__)


def validate_image(path: Union[str, Path], page_index: int, max_file_size: int = MAX_FILE_SIZE_BYTES) -> ImageDescriptor:
    """
    Validate a single image file and build its descriptor.

    Args:
        path: Path to the image.
        page_index: 0-based position of the image in the job.
        max_file_size: Size ceiling in bytes.

    Returns:
        ImageDescriptor for the file.

    Raises:
        ImageValidationError: If the file is missing, a directory, too large
            or not a supported image format.
    """
    p = Path(path)
    if not p.exists():
        raise ImageValidationError(f"file not found: {p}", path=str(p))
    if p.is_dir():
        raise ImageValidationError(f"path is a directory: {p}", path=str(p))

    size = p.stat().st_size
    if size > max_file_size:
        raise ImageValidationError(
            f"file too large: {p.name} ({size} bytes, max {max_file_size})",
            path=str(p),
        )

    ext = p.suffix.lower()
    if ext not in SUPPORTED_IMAGE_EXTENSIONS:
        raise ImageValidationError(
            f"unsupported image format: {p.name} ({ext or 'no extension'})",
            path=str(p),
        )

    return ImageDescriptor(
        path=p.resolve(),
        filename=p.name,
        byte_size=size,
        page_index=page_index,
    )


def validate_images(
    paths: Sequence[Union[str, Path]],
    max_file_size: int = MAX_FILE_SIZE_BYTES,
    max_total_images: int = MAX_TOTAL_IMAGES,
) -> List[ImageDescriptor]:
    """
    Validate an ordered list of image paths.

    Page indices follow the input order.

    Raises:
        ImageValidationError: On the first invalid path, or when the list is
            empty or longer than ``max_total_images``.
    """
    if not paths:
        raise ImageValidationError("no images provided")
    if len(paths) > max_total_images:
        raise ImageValidationError(
            f"too many images: {len(paths)} (max {max_total_images})"
        )

    descriptors = [
        validate_image(path, index, max_file_size)
        for index, path in enumerate(paths)
    ]
    total = sum(d.byte_size for d in descriptors)
    logger.info(f"Validated {len(descriptors)} images ({total:,} bytes)")
    return descriptors
