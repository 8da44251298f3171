"""Test fixtures and utilities.

Builders for the data types that flow through the pipeline, Pillow-generated
page images, and a provider double whose ``submit`` echoes one page per image.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple
from unittest.mock import AsyncMock, MagicMock

from PIL import Image

from pagescribe.core.models import ImageDescriptor, PageContent
from pagescribe.llm.providers.base import BatchResult, LLMReply, RetryPolicy


def write_image(
    path: Path,
    size: Tuple[int, int] = (64, 48),
    color: Tuple[int, int, int] = (200, 200, 200),
    fmt: Optional[str] = None,
    mode: str = "RGB",
) -> Path:
    """Write a small solid-color image; the format follows the suffix unless ``fmt`` is given."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fill = color if mode != "RGBA" else (*color, 128)
    Image.new(mode, size, fill).save(path, format=fmt)
    return path


def make_descriptors(count: int, byte_size: int = 1000, start: int = 0) -> List[ImageDescriptor]:
    """Descriptors for images that need not exist on disk."""
    return [
        ImageDescriptor(
            path=Path(f"/scans/page{i + 1}.png"),
            filename=f"page{i + 1}.png",
            byte_size=byte_size,
            page_index=i,
        )
        for i in range(start, start + count)
    ]


def make_page(number: int, text: Optional[str] = None, **kwargs) -> PageContent:
    return PageContent(
        page_number=number,
        text=text if text is not None else f"Text of page {number}",
        **kwargs,
    )


def echo_pages(batch: Sequence[ImageDescriptor]) -> List[PageContent]:
    return [make_page(d.page_number) for d in batch]


def make_mock_provider(
    *,
    submit: Optional[Callable] = None,
    one_image_per_batch: bool = False,
    tokens_per_batch: int = 10,
) -> MagicMock:
    """
    Build a provider double.

    ``submit`` may be an async callable ``(batch, context, progress)`` used as
    the side effect; by default every image comes back as one page.
    """
    provider = MagicMock()
    provider.provider_name = "mock"
    provider.display_name = "Mock"
    provider.model = "mock-vision"
    provider.endpoint = "http://mock.local"
    provider.one_image_per_batch = one_image_per_batch
    provider.retry_policy = RetryPolicy(max_retries=0, backoff_steps=(0,))
    provider.endpoint_description.return_value = "http://mock.local/v1/chat/completions"
    provider.close = AsyncMock()

    async def _echo(batch, context, progress=None):
        return BatchResult(pages=echo_pages(batch), tokens=tokens_per_batch)

    provider.submit = AsyncMock(side_effect=submit or _echo)
    provider.complete_text = AsyncMock(return_value=LLMReply(content="", total_tokens=0))
    return provider
