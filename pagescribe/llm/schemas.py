"""Pydantic schemas for decoding structured page output.

Models are asked to answer with ``{"pages": [...]}``. These schemas validate
that payload; null fields fall back to their defaults so a model writing
``"heading_text": null`` still decodes.
"""

from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pagescribe.core.models import ImageDescription, PageContent


def _drop_nulls(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if v is not None}
    return data


class ImageDescriptionModel(BaseModel):
    """A figure or photo found on the page."""

    model_config = ConfigDict(extra="ignore")

    description: str = Field(default="", description="What the image shows.")
    type: str = Field(default="", description="photo, chart, diagram, illustration, ...")
    caption: str = Field(default="", description="Caption text printed near the image, if any.")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        return _drop_nulls(data)


class PageModel(BaseModel):
    """One transcribed page."""

    model_config = ConfigDict(extra="ignore")

    page_number: int = Field(default=0, description="Page number as seen by the model (not trusted).")
    text: str = Field(default="", description="Full page text as markdown.")
    has_heading: bool = Field(default=False, description="Whether the page carries a heading.")
    heading_text: str = Field(default="", description="Main heading text on the page.")
    heading_level: int = Field(default=0, description="Heading level, 1 for chapter titles.")
    is_chapter_start: bool = Field(default=False, description="Whether a new chapter begins on this page.")
    chapter_title: str = Field(default="", description="Chapter title when is_chapter_start is true.")
    images: List[ImageDescriptionModel] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        return _drop_nulls(data)

    def to_page_content(self, page_number: int) -> PageContent:
        return PageContent(
            page_number=page_number,
            text=self.text,
            has_heading=self.has_heading,
            heading_text=self.heading_text,
            heading_level=self.heading_level,
            is_chapter_start=self.is_chapter_start,
            chapter_title=self.chapter_title,
            images=[
                ImageDescription(
                    description=img.description,
                    type=img.type,
                    caption=img.caption,
                )
                for img in self.images
            ],
        )


class PagesPayload(BaseModel):
    """Top-level response envelope."""

    model_config = ConfigDict(extra="ignore")

    pages: List[PageModel]
