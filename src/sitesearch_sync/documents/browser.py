"""
File Browser

Decides which rendered documents are worth indexing and computes the
metadata every record of a document shares (url, type, date, slug, ...).
"""

from __future__ import annotations

import datetime as dt
import fnmatch
import logging
import re
from pathlib import PurePosixPath
from typing import Any, Dict, Optional

from .models import Document
from ..config import Settings
from ..indexing.hooks import Hooks
from ..utils import compact_empty, html_to_text, jsonify

logger = logging.getLogger("sitesearch.browser")

_PAGINATION_PAGE = re.compile(r"(^|/)page(s/)?[0-9]*/index\.html$")

# Keys computed by a dedicated getter; raw front-matter values are ignored.
SPECIFIC_KEYS = (
    "collection",
    "date",
    "excerpt",
    "excerpt_html",
    "excerpt_text",
    "slug",
    "type",
    "url",
)


class FileBrowser:
    """
    Indexability rules and metadata extraction for one site build.
    """

    def __init__(
        self,
        config: Settings,
        hooks: Optional[Hooks] = None,
        start_time: Optional[dt.datetime] = None,
    ) -> None:
        """
        Parameters
        ----------
        config : Settings
            Indexer configuration.

        hooks : Optional[Hooks]
            User hooks; only ``should_be_excluded`` is used here.

        start_time : Optional[datetime]
            Time the build started. Site generators stamp undated documents
            with it, so a date equal to it is treated as no date.
        """
        self.config = config
        self.hooks = hooks or Hooks()
        self.start_time = start_time

    # ------------------------------------------------------------------
    # Indexability
    # ------------------------------------------------------------------

    @staticmethod
    def is_static_file(document: Document) -> bool:
        return document.is_static

    @staticmethod
    def is_404(document: Document) -> bool:
        return PurePosixPath(document.path).stem == "404"

    @staticmethod
    def is_pagination_page(document: Document) -> bool:
        return bool(_PAGINATION_PAGE.search(document.path))

    def has_allowed_extension(self, document: Document) -> bool:
        extension = PurePosixPath(document.path).suffix.lstrip(".")
        return extension in self.config.resolved_extensions

    def is_excluded_from_config(self, document: Document) -> bool:
        path = document.path.lstrip("/")
        return any(
            fnmatch.fnmatchcase(path, pattern.lstrip("/"))
            for pattern in self.config.resolved_files_to_exclude
        )

    def is_excluded_from_hook(self, document: Document) -> bool:
        return bool(self.hooks.should_be_excluded(document.path))

    def is_excluded_by_user(self, document: Document) -> bool:
        return self.is_excluded_from_config(document) or self.is_excluded_from_hook(document)

    def is_indexable(self, document: Document) -> bool:
        if self.is_static_file(document):
            return False
        if self.is_404(document):
            return False
        if self.is_pagination_page(document):
            return False
        if not self.has_allowed_extension(document):
            return False
        if self.is_excluded_by_user(document):
            return False
        return True

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def metadata(self, document: Document) -> Dict[str, Any]:
        """
        Shared metadata of every record extracted from ``document``.

        Raw front matter comes first; dedicated getters override it. Empty
        values are dropped.
        """
        raw = {
            key: value
            for key, value in document.data.items()
            if key not in SPECIFIC_KEYS
        }
        if document.title is not None:
            raw["title"] = document.title
        if document.tags:
            raw["tags"] = list(document.tags)

        specific = {
            "collection": self.collection(document),
            "date": self.date(document),
            "excerpt_html": self.excerpt_html(document),
            "excerpt_text": self.excerpt_text(document),
            "slug": self.slug(document),
            "type": document.type,
            "url": document.url,
        }

        merged = {key: jsonify(value) for key, value in raw.items()}
        merged.update(specific)
        return compact_empty(merged)

    @staticmethod
    def collection(document: Document) -> Optional[str]:
        # Posts are a collection internally, but not from a user's point of view
        if document.type == "post":
            return None
        return document.collection

    def date(self, document: Document) -> Optional[int]:
        value = document.date
        if value is None:
            return None

        if isinstance(value, dt.datetime):
            timestamp = int(value.timestamp())
        elif isinstance(value, dt.date):
            timestamp = int(
                dt.datetime(value.year, value.month, value.day, tzinfo=dt.timezone.utc).timestamp()
            )
        else:
            timestamp = int(value)

        if self.start_time is not None and timestamp == int(self.start_time.timestamp()):
            return None
        return timestamp

    @staticmethod
    def excerpt_html(document: Document) -> Optional[str]:
        # Only posts and collection documents have excerpts
        if document.type == "page" or document.excerpt is None:
            return None
        return document.excerpt.replace("\n", " ").strip()

    def excerpt_text(self, document: Document) -> Optional[str]:
        return html_to_text(self.excerpt_html(document))

    @staticmethod
    def slug(document: Document) -> str:
        if document.data.get("slug"):
            return str(document.data["slug"])
        if document.slug:
            return document.slug
        return PurePosixPath(document.path).stem.lower()
