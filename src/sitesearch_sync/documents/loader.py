"""
Rendered Site Loader

Reads an already built site directory and turns every HTML file into a
``Document``. Front matter is gone once a site is rendered, so documents
loaded this way only carry a title, a URL and their content.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

from bs4 import BeautifulSoup

from .models import Document
from ..utils import normalize_whitespace

logger = logging.getLogger("sitesearch.loader")


def url_for(relative_path: str) -> str:
    """
    Public URL of a rendered file.

    ``index.html`` files are served as their directory.
    """
    url = "/" + relative_path.lstrip("/")
    if url.endswith("/index.html"):
        url = url[: -len("index.html")]
    return url


def load_document(path: Path, site_dir: Path) -> Document:
    relative = path.relative_to(site_dir).as_posix()
    content = path.read_text(encoding="utf-8", errors="replace")

    soup = BeautifulSoup(content, "html.parser")
    title = normalize_whitespace(soup.title.get_text()) if soup.title else None

    return Document(
        path=relative,
        url=url_for(relative),
        content=content,
        type="page",
        title=title or None,
    )


def load_site(site_dir: Union[str, Path]) -> List[Document]:
    """
    Load every ``*.html`` file below ``site_dir``, sorted by path.

    Raises
    ------
    FileNotFoundError
        If ``site_dir`` does not exist.
    """
    root = Path(site_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Site directory not found: {root}")

    documents = [load_document(path, root) for path in sorted(root.rglob("*.html"))]
    logger.info("Loaded %d documents from %s", len(documents), root)
    return documents
