"""Batch planning: group page images into provider-sized requests.

The default policy is a greedy single pass under two ceilings, an item count
and an estimated encoded payload size. Local providers use one image per
batch so each request fits a small context window.
"""

from __future__ import annotations

import math
from typing import List, Sequence

from pagescribe.config.constants import (
    ENCODING_OVERHEAD,
    MAX_IMAGES_PER_REQUEST,
    MAX_PAYLOAD_BYTES,
)
from pagescribe.core.models import ImageDescriptor
from pagescribe.infra.logger import setup_logger

logger = setup_logger(__name__)

Batch = List[ImageDescriptor]


def estimate_encoded_size(byte_size: int, overhead: float = ENCODING_OVERHEAD) -> int:
    """Approximate request bytes for an image after base64 and JSON framing."""
    return int(math.ceil(byte_size * overhead))


def plan_batches(
    descriptors: Sequence[ImageDescriptor],
    max_items: int = MAX_IMAGES_PER_REQUEST,
    max_payload_bytes: int = MAX_PAYLOAD_BYTES,
    overhead: float = ENCODING_OVERHEAD,
) -> List[Batch]:
    """
    Partition descriptors into contiguous, non-empty batches.

    The current batch is closed when adding the next image would exceed
    either ceiling. An image whose own estimate exceeds the payload ceiling
    is placed alone in its own batch.

    Args:
        descriptors: Images in page order.
        max_items: Maximum images per batch.
        max_payload_bytes: Maximum estimated encoded bytes per batch.
        overhead: Multiplier applied to raw file sizes.

    Returns:
        Batches whose concatenation equals ``descriptors``.
    """
    if max_items < 1:
        raise ValueError(f"max_items must be >= 1, got {max_items}")
    if max_payload_bytes < 1:
        raise ValueError(f"max_payload_bytes must be >= 1, got {max_payload_bytes}")
    if overhead <= 0:
        raise ValueError(f"overhead must be positive, got {overhead}")

    batches: List[Batch] = []
    current: Batch = []
    current_size = 0

    for descriptor in descriptors:
        size = estimate_encoded_size(descriptor.byte_size, overhead)

        if size > max_payload_bytes:
            if current:
                batches.append(current)
                current, current_size = [], 0
            logger.warning(
                f"{descriptor.filename} exceeds the payload ceiling on its own "
                f"({size:,} > {max_payload_bytes:,} bytes); sending it alone"
            )
            batches.append([descriptor])
            continue

        if current and (
            current_size + size > max_payload_bytes or len(current) + 1 > max_items
        ):
            batches.append(current)
            current, current_size = [], 0

        current.append(descriptor)
        current_size += size

    if current:
        batches.append(current)

    return batches


def plan_single_image_batches(descriptors: Sequence[ImageDescriptor]) -> List[Batch]:
    """One batch per image, for providers with small context windows."""
    return [[descriptor] for descriptor in descriptors]


class BatchPlanner:
    """Chooses the batching policy for a provider."""

    def __init__(
        self,
        max_items: int = MAX_IMAGES_PER_REQUEST,
        max_payload_bytes: int = MAX_PAYLOAD_BYTES,
        overhead: float = ENCODING_OVERHEAD,
    ) -> None:
        self.max_items = max_items
        self.max_payload_bytes = max_payload_bytes
        self.overhead = overhead

    def plan(self, descriptors: Sequence[ImageDescriptor], one_image_per_batch: bool = False) -> List[Batch]:
        if one_image_per_batch:
            batches = plan_single_image_batches(descriptors)
        else:
            batches = plan_batches(
                descriptors,
                max_items=self.max_items,
                max_payload_bytes=self.max_payload_bytes,
                overhead=self.overhead,
            )
        logger.info(
            f"Planned {len(batches)} batches for {len(descriptors)} images "
            f"(sizes: {[len(b) for b in batches]})"
        )
        return batches
