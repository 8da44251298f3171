"""Data model shared by the pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class ImageDescriptor:
    """A validated input image. ``page_index`` is the sole ordering key."""

    path: Path
    filename: str
    byte_size: int
    page_index: int

    @property
    def page_number(self) -> int:
        return self.page_index + 1


@dataclass
class ImageDescription:
    """A figure, chart or photo found on a page."""

    description: str = ""
    type: str = ""
    caption: str = ""


@dataclass
class PageContent:
    """Structured content extracted from one page image."""

    page_number: int
    text: str = ""
    has_heading: bool = False
    heading_text: str = ""
    heading_level: int = 0
    is_chapter_start: bool = False
    chapter_title: str = ""
    images: List[ImageDescription] = field(default_factory=list)


@dataclass
class ChapterInfo:
    title: str
    start_page: int
    end_page: int
    level: int = 1


@dataclass
class PageRange:
    start: int
    end: int


@dataclass
class Section:
    title: str
    level: int
    page: int


@dataclass
class MarkdownDocument:
    """An assembled output document, ready to be written."""

    filename: str
    title: str
    content: str
    page_range: PageRange
    sections: List[Section] = field(default_factory=list)


@dataclass
class TranscribeRequest:
    """Caller-facing description of a transcription job.

    ``images`` are absolute paths in page order. ``temperature`` and
    ``language`` are optional; provider defaults apply when they are None.
    ``max_retries`` is the retry ceiling for each provider request.
    """

    images: List[Path]
    output_dir: Optional[Path] = None
    model: Optional[str] = None
    language: Optional[str] = None
    detect_chapters: bool = False
    combine_pages: bool = False
    preserve_formatting: bool = True
    include_image_descriptions: bool = False
    temperature: Optional[float] = None
    max_retries: Optional[int] = None


@dataclass
class TranscribeResponse:
    documents: List[MarkdownDocument]
    total_pages: int
    processing_time: float
    tokens_used: int
