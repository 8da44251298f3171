"""Document assembly.

Groups ordered pages into markdown documents using one of three layouts:
one document per page, a single combined document, or one document per
detected chapter (falling back to combined when no chapter is found).
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence

from pagescribe.config.constants import COMBINED_DOCUMENT_TITLE, PAGE_SEPARATOR
from pagescribe.core.models import (
    ChapterInfo,
    MarkdownDocument,
    PageContent,
    PageRange,
    Section,
)
from pagescribe.core.safe_paths import numbered_filename
from pagescribe.infra.logger import setup_logger

logger = setup_logger(__name__)

# Title used for pages that come before the first detected chapter
FRONT_MATTER_TITLE = "Front Matter"


class AssemblyMode(str, Enum):
    PER_PAGE = "per_page"
    COMBINED = "combined"
    CHAPTERS = "chapters"


def is_chapter_boundary(page: PageContent) -> bool:
    return page.is_chapter_start or (page.has_heading and page.heading_level <= 2)


def detect_chapters(pages: Sequence[PageContent]) -> List[ChapterInfo]:
    """
    Find chapter boundaries in a single forward pass.

    A page opens a chapter when it is flagged as a chapter start or carries
    a heading of level 2 or above. Opening a chapter closes the previous one
    on the page before; the last chapter ends on the last page.
    """
    chapters: List[ChapterInfo] = []
    if not pages:
        return chapters

    last_page = pages[-1].page_number
    for page in pages:
        if not is_chapter_boundary(page):
            continue
        title = page.chapter_title or page.heading_text or f"Section {len(chapters) + 1}"
        if chapters:
            chapters[-1].end_page = page.page_number - 1
        chapters.append(
            ChapterInfo(
                title=title,
                start_page=page.page_number,
                end_page=last_page,
                level=page.heading_level or 1,
            )
        )
    return chapters


def format_image_descriptions(page: PageContent) -> str:
    """Render ``*[type: description - caption]*`` lines for a page's images."""
    lines = []
    for img in page.images:
        line = f"*[{img.type}: {img.description}"
        if img.caption:
            line += f" - {img.caption}"
        lines.append(line + "]*\n\n")
    return "".join(lines)


def build_document(
    pages: Sequence[PageContent],
    title: str,
    index: int = 0,
    include_image_descriptions: bool = False,
) -> MarkdownDocument:
    """
    Concatenate pages into one document.

    Pages are separated by a horizontal rule. A ``# title`` header is added
    for every title except the combined-document title.
    """
    if not pages:
        raise ValueError("cannot build a document without pages")

    parts: List[str] = []
    sections: List[Section] = []
    if title and title != COMBINED_DOCUMENT_TITLE:
        parts.append(f"# {title}\n\n")

    for i, page in enumerate(pages):
        if i > 0:
            parts.append(PAGE_SEPARATOR)
        if page.has_heading and page.heading_level > 0:
            sections.append(Section(title=page.heading_text, level=page.heading_level, page=page.page_number))
        parts.append(page.text)
        if include_image_descriptions and page.images:
            parts.append("\n\n")
            parts.append(format_image_descriptions(page))

    return MarkdownDocument(
        filename=numbered_filename(title, index),
        title=title,
        content="".join(parts),
        page_range=PageRange(start=pages[0].page_number, end=pages[-1].page_number),
        sections=sections,
    )


class DocumentAssembler:
    """Turns the merged page sequence into output documents."""

    def __init__(self, include_image_descriptions: bool = False) -> None:
        self.include_image_descriptions = include_image_descriptions

    @staticmethod
    def select_mode(detect_chapters: bool, combine_pages: bool) -> AssemblyMode:
        if detect_chapters:
            return AssemblyMode.CHAPTERS
        if combine_pages:
            return AssemblyMode.COMBINED
        return AssemblyMode.PER_PAGE

    def assemble(
        self,
        pages: Sequence[PageContent],
        *,
        detect_chapters: bool = False,
        combine_pages: bool = False,
        include_image_descriptions: Optional[bool] = None,
        mode: Optional[AssemblyMode] = None,
    ) -> List[MarkdownDocument]:
        """Assemble documents; ``detect_chapters`` takes precedence over ``combine_pages``."""
        if not pages:
            return []
        if include_image_descriptions is not None:
            self.include_image_descriptions = include_image_descriptions
        mode = mode or self.select_mode(detect_chapters, combine_pages)
        if mode is AssemblyMode.COMBINED:
            documents = [self.combine(pages)]
        elif mode is AssemblyMode.CHAPTERS:
            documents = self.by_chapters(pages)
        else:
            documents = self.per_page(pages)
        logger.info(f"Assembled {len(documents)} document(s) from {len(pages)} pages ({mode.value})")
        return documents

    def combine(self, pages: Sequence[PageContent]) -> MarkdownDocument:
        return build_document(pages, COMBINED_DOCUMENT_TITLE, 0, self.include_image_descriptions)

    def by_chapters(self, pages: Sequence[PageContent]) -> List[MarkdownDocument]:
        chapters = detect_chapters(pages)
        if not chapters:
            logger.info("No chapter boundaries detected; combining all pages")
            return [self.combine(pages)]

        first_page = pages[0].page_number
        if chapters[0].start_page > first_page:
            chapters.insert(
                0,
                ChapterInfo(
                    title=FRONT_MATTER_TITLE,
                    start_page=first_page,
                    end_page=chapters[0].start_page - 1,
                    level=1,
                ),
            )

        documents: List[MarkdownDocument] = []
        for i, chapter in enumerate(chapters):
            chapter_pages = [
                page for page in pages
                if chapter.start_page <= page.page_number <= chapter.end_page
            ]
            if not chapter_pages:
                continue
            doc = build_document(chapter_pages, chapter.title, i + 1, self.include_image_descriptions)
            doc.page_range = PageRange(start=chapter.start_page, end=chapter.end_page)
            documents.append(doc)
        return documents

    def per_page(self, pages: Sequence[PageContent]) -> List[MarkdownDocument]:
        documents: List[MarkdownDocument] = []
        for page in pages:
            content = page.text
            if self.include_image_descriptions and page.images:
                content = content + "\n\n" + format_image_descriptions(page)
            title = f"Page {page.page_number}"
            sections: List[Section] = []
            if page.has_heading and page.heading_text:
                title = page.heading_text
                sections.append(Section(title=page.heading_text, level=page.heading_level, page=page.page_number))
            documents.append(
                MarkdownDocument(
                    filename=f"page_{page.page_number:03d}.md",
                    title=title,
                    content=content,
                    page_range=PageRange(start=page.page_number, end=page.page_number),
                    sections=sections,
                )
            )
        return documents
