"""Prompt construction for extraction and refinement requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from pagescribe.core.models import ImageDescriptor, PageContent


@dataclass(frozen=True)
class PromptContext:
    """Per-request options passed from the pipeline to a provider.

    ``batch_number`` is 1-based and only used for progress messages.
    ``temperature`` and ``max_retries`` override the provider defaults for
    this request only.
    """

    language: Optional[str] = None
    preserve_formatting: bool = True
    temperature: Optional[float] = None
    max_retries: Optional[int] = None
    batch_number: int = 1
    total_batches: int = 1


_PAGE_SCHEMA_EXAMPLE = """{
  "pages": [
    {
      "page_number": 1,
      "text": "The full text content in markdown format",
      "has_heading": true,
      "heading_text": "Chapter 1: Introduction",
      "heading_level": 1,
      "is_chapter_start": true,
      "chapter_title": "Introduction",
      "images": [
        {"description": "A bar chart showing sales data", "type": "chart", "caption": "Figure 1.1"}
      ]
    }
  ]
}"""

EXTRACTION_INSTRUCTIONS = f"""You are an expert OCR and document analysis system. Extract all text content from the provided images, which are pages from a document.

For each page/image, output a JSON object with the following structure:
{_PAGE_SCHEMA_EXAMPLE}

Guidelines:
1. Preserve the original formatting as much as possible using markdown:
   - Use # for headings (# for h1, ## for h2, etc.)
   - Use **bold** and *italic* where appropriate
   - Use bullet points and numbered lists
   - Use > for blockquotes
   - Use code blocks for code/preformatted text
   - Use tables for tabular data (markdown table format)

2. Chapter/Section Detection:
   - Identify chapter starts (large headings, "Chapter X", "Part X", etc.)
   - Note section headings and their hierarchy
   - Mark page breaks between logical sections

3. Image Descriptions:
   - For figures, charts, diagrams, photos - provide brief descriptions
   - Include captions if visible
   - Classify the image type (figure, chart, photo, diagram, table, etc.)

"""

FORMATTING_INSTRUCTIONS = """5. Pay special attention to preserving:
   - Paragraph structure and spacing
   - Indentation levels
   - Special characters and symbols
   - Mathematical notation (use LaTeX format: $equation$)

"""

LOCAL_EXTRACTION_INSTRUCTIONS = """Extract text from this image page. Output JSON:
{"pages":[{"page_number":1,"text":"extracted markdown text","has_heading":false,"heading_text":"","is_chapter_start":false}]}

Rules:
- Use markdown formatting (# headings, **bold**, lists, tables)
- Preserve original text layout
- Output valid JSON only
"""

REFINEMENT_INSTRUCTIONS = """You are an expert document editor and markdown specialist. You have been given raw text extracted from document images by a vision model. Your task is to refine this text into well-formatted, polished markdown.

## Your Tasks:
1. **Fix OCR errors**: Correct obvious typos and misrecognized characters
2. **Improve formatting**: Ensure proper markdown structure (headings, lists, tables, etc.)
3. **Maintain accuracy**: Do NOT add, remove, or change the meaning of any content
4. **Preserve structure**: Keep chapter/section organization intact
5. **Clean up artifacts**: Remove scanning artifacts, page numbers if redundant, etc.

## Output Format:
Return JSON with the refined pages, one entry per input page and in the same order:
{
  "pages": [
    {
      "page_number": 1,
      "text": "Refined markdown content",
      "has_heading": true,
      "heading_text": "Chapter Title",
      "heading_level": 1,
      "is_chapter_start": true,
      "chapter_title": "Chapter Title",
      "images": []
    }
  ]
}

"""


def build_extraction_prompt(batch: Sequence[ImageDescriptor], context: PromptContext) -> str:
    """Full extraction prompt used by cloud and enterprise providers."""
    parts = [EXTRACTION_INSTRUCTIONS]
    if context.language:
        parts.append(f"4. The document is in {context.language}. Output the text in the same language.\n\n")
    else:
        parts.append("4. Auto-detect the document language and preserve it in the output.\n\n")
    if context.preserve_formatting:
        parts.append(FORMATTING_INSTRUCTIONS)
    parts.append(
        f"Process the following {len(batch)} images as consecutive pages "
        f"(starting from page {batch[0].page_number}):\n"
    )
    return "".join(parts)


def build_local_prompt(batch: Sequence[ImageDescriptor], context: PromptContext) -> str:
    """Short prompt for local models with small context windows."""
    parts = [LOCAL_EXTRACTION_INSTRUCTIONS]
    if context.language:
        parts.append(f"- Document language: {context.language}\n")
    parts.append(f"\nPage {batch[0].page_number}:\n")
    return "".join(parts)


def build_refinement_prompt(
    pages: Sequence[PageContent],
    language: Optional[str] = None,
    preserve_formatting: bool = True,
) -> str:
    """Serialize extracted pages under ``### Page N:`` headers for the text model."""
    parts = [REFINEMENT_INSTRUCTIONS]
    if language:
        parts.append(f"Document language: {language}\n\n")
    if preserve_formatting:
        parts.append("IMPORTANT: Pay special attention to preserving tables, lists, and special formatting.\n\n")
    parts.append(f"## Raw Extracted Text to Refine ({len(pages)} pages):\n\n")
    for page in pages:
        parts.append(f"### Page {page.page_number}:\n")
        parts.append(page.text)
        parts.append("\n\n---\n\n")
    parts.append("\nNow refine the above text into clean, well-formatted markdown. Output JSON only.")
    return "".join(parts)


def preview(text: str, limit: int = 200) -> str:
    """Single-line preview for progress events and logs."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."
