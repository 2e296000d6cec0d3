"""
Document Model

A rendered document as handed over by the site build. One instance per
output file; records are extracted from its ``content``.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


DocumentType = Literal["page", "post", "document"]


class Document(BaseModel):
    """
    A single rendered document.

    ``path`` is the source path relative to the site root; ``url`` is the
    public URL the document is served under.
    """

    path: str = Field(
        ...,
        min_length=1,
        description="Source path of the document, relative to the site root.",
    )

    url: str = Field(
        ...,
        description="Public URL of the rendered document.",
    )

    content: str = Field(
        default="",
        description="Rendered HTML content.",
    )

    type: DocumentType = Field(
        default="page",
        description="Kind of document: plain page, blog post, or collection document.",
    )

    collection: Optional[str] = Field(
        default=None,
        description="Collection label for collection documents (posts included).",
    )

    title: Optional[str] = None
    slug: Optional[str] = None

    date: Optional[Union[dt.datetime, dt.date, int]] = Field(
        default=None,
        description="Publication date, as set in the front matter or file name.",
    )

    tags: List[str] = Field(default_factory=list)

    excerpt: Optional[str] = Field(
        default=None,
        description="Rendered HTML excerpt, if the document has one.",
    )

    data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Raw front matter, including user-defined keys.",
    )

    is_static: bool = Field(
        default=False,
        description="True for static assets (images, CSS, JS) copied as-is.",
    )

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )
