"""Image discovery for the command line.

Sources may be image files, directories (non-recursive) or glob patterns.
The combined result is de-duplicated by absolute path and ordered by natural
filename order so that ``page2.png`` comes before ``page10.png``.
"""

from __future__ import annotations

import glob
import re
from pathlib import Path
from typing import List, Sequence, Union

from pagescribe.config.constants import SUPPORTED_IMAGE_EXTENSIONS
from pagescribe.infra.logger import setup_logger

logger = setup_logger(__name__)

_DIGITS = re.compile(r"(\d+)")


def natural_sort_key(name: str) -> List[Union[int, str]]:
    """
    Sort key that compares digit runs numerically.

    Example:
        >>> sorted(["page10.png", "page2.png"], key=natural_sort_key)
        ['page2.png', 'page10.png']
    """
    return [int(part) if part.isdigit() else part.lower() for part in _DIGITS.split(name)]


def is_image_file(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_IMAGE_EXTENSIONS


def _images_in_directory(directory: Path) -> List[Path]:
    images = [p for p in directory.iterdir() if p.is_file() and is_image_file(p)]
    if not images:
        raise ValueError(f"no image files found in directory: {directory}")
    return images


def _resolve_source(source: str) -> List[Path]:
    path = Path(source).expanduser()
    if path.is_dir():
        return _images_in_directory(path)
    if path.is_file():
        if not is_image_file(path):
            raise ValueError(f"not a supported image file: {source}")
        return [path]

    matches = sorted(glob.glob(str(path)))
    if not matches:
        raise ValueError(f"no files found matching: {source}")

    images: List[Path] = []
    for match in matches:
        candidate = Path(match)
        if candidate.is_dir():
            images.extend(p for p in candidate.iterdir() if p.is_file() and is_image_file(p))
        elif is_image_file(candidate):
            images.append(candidate)
    return images


def load_images(sources: Sequence[str]) -> List[Path]:
    """
    Expand command-line sources into an ordered list of image paths.

    Args:
        sources: Files, directories or glob patterns.

    Returns:
        Absolute paths in natural filename order.

    Raises:
        ValueError: If no sources are given, a source cannot be resolved, or
            nothing usable is found.
    """
    if not sources:
        raise ValueError("no image sources provided")

    seen = set()
    paths: List[Path] = []
    for source in sources:
        for p in _resolve_source(source):
            resolved = p.resolve()
            if resolved not in seen:
                seen.add(resolved)
                paths.append(resolved)

    if not paths:
        raise ValueError("no valid image files found")

    paths.sort(key=lambda p: natural_sort_key(p.name))
    logger.info(f"Found {len(paths)} images ({format_size(total_size(paths))})")
    return paths


def total_size(paths: Sequence[Path]) -> int:
    return sum(p.stat().st_size for p in paths)


def format_size(size: int) -> str:
    """Human-readable byte size with one decimal, e.g. ``1.5 MB``."""
    if size >= 1024 ** 3:
        return f"{size / 1024 ** 3:.1f} GB"
    if size >= 1024 ** 2:
        return f"{size / 1024 ** 2:.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"
