"""Parse model output into PageContent.

Models are asked for ``{"pages": [...]}`` JSON but often wrap it in a code
fence or ignore the instruction entirely. Batch parsing never fails: output
that does not decode is kept verbatim as a single page credited to the first
image of the batch.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from typing import List, Optional, Sequence

from pydantic import ValidationError

from pagescribe.core.errors import RefinementError
from pagescribe.core.models import ImageDescriptor, PageContent
from pagescribe.llm.schemas import PagesPayload

logger = logging.getLogger(__name__)

_OPENING_FENCE = re.compile(r"^```[\w+-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Trim whitespace and remove a surrounding ``` fence (with or without a language tag)."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _OPENING_FENCE.sub("", cleaned, count=1)
        cleaned = _CLOSING_FENCE.sub("", cleaned, count=1)
        cleaned = cleaned.strip()
    return cleaned


def decode_pages(text: str) -> Optional[PagesPayload]:
    """Decode a cleaned response, or return None when it is not a pages payload."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"Response is not JSON: {e}")
        return None
    if not isinstance(data, dict) or not isinstance(data.get("pages"), list):
        logger.debug("Response JSON has no 'pages' list")
        return None
    try:
        return PagesPayload.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Response pages failed validation: {e}")
        return None


def parse_batch_response(raw: str, batch: Sequence[ImageDescriptor]) -> List[PageContent]:
    """
    Convert raw model output for one batch into pages aligned with the batch.

    Page numbers always come from the batch descriptors. Extra pages the
    model invents are dropped and missing ones are filled with empty pages,
    so a decoded response yields exactly ``len(batch)`` pages.

    Args:
        raw: Raw response text.
        batch: The images sent in the request, in page order.

    Returns:
        Pages for the batch, or a single raw-text page when decoding fails.
    """
    if not batch:
        raise ValueError("cannot parse a response for an empty batch")

    text = strip_code_fences(raw)
    payload = decode_pages(text)
    if payload is None:
        logger.warning(
            f"Could not decode structured output for pages "
            f"{batch[0].page_number}-{batch[-1].page_number}; keeping raw text "
            f"as page {batch[0].page_number}"
        )
        return [PageContent(page_number=batch[0].page_number, text=text)]

    decoded = payload.pages
    if len(decoded) > len(batch):
        logger.warning(
            f"Model returned {len(decoded)} pages for {len(batch)} images; "
            f"dropping the extra {len(decoded) - len(batch)}"
        )
    elif len(decoded) < len(batch):
        logger.warning(
            f"Model returned {len(decoded)} pages for {len(batch)} images; "
            f"filling the missing pages with empty text"
        )

    pages: List[PageContent] = []
    for i, descriptor in enumerate(batch):
        if i < len(decoded):
            pages.append(decoded[i].to_page_content(descriptor.page_number))
        else:
            pages.append(PageContent(page_number=descriptor.page_number))
    return pages


def parse_refinement_response(raw: str, original_pages: Sequence[PageContent]) -> List[PageContent]:
    """
    Convert a refinement reply into pages carrying the original page numbers.

    A single-page job accepts plain markdown as the refined text.

    Raises:
        RefinementError: If the reply cannot be decoded or its page count
            differs from the original.
    """
    if not original_pages:
        raise RefinementError("no pages to refine")

    text = strip_code_fences(raw)
    payload = decode_pages(text)
    if payload is None:
        if len(original_pages) == 1:
            return [replace(original_pages[0], text=text, images=list(original_pages[0].images))]
        raise RefinementError("failed to parse refinement response")

    if len(payload.pages) != len(original_pages):
        raise RefinementError(
            f"refinement returned {len(payload.pages)} pages, expected {len(original_pages)}"
        )

    return [
        _merge_refined(original, refined.to_page_content(original.page_number))
        for original, refined in zip(original_pages, payload.pages)
    ]


def _merge_refined(original: PageContent, refined: PageContent) -> PageContent:
    if not refined.images:
        refined.images = list(original.images)
    return refined
