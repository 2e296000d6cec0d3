"""
Hierarchical Record Extraction

Walks a rendered HTML document and emits one raw record per node matching
the configured CSS selector, each annotated with the headings it lives
under.

Key Properties
--------------
- Records come out in document order
- ``hierarchy.lvlN`` is the text of the innermost open ``h(N+1)``
- A new heading at level N closes every deeper level
- The parsed document is never mutated
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from ..utils import normalize_whitespace

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
HIERARCHY_DEPTH = len(HEADING_TAGS)

# Score of a node that sits under no heading at all; each level of nesting
# removes HEADING_WEIGHT_STEP.
HEADING_WEIGHT_MAX = 100
HEADING_WEIGHT_STEP = 10


class HierarchyStack:
    """
    Currently open headings, indexed by level (0 for ``h1``).
    """

    def __init__(self) -> None:
        self._levels: List[Optional[str]] = [None] * HIERARCHY_DEPTH
        self._anchors: List[Optional[str]] = [None] * HIERARCHY_DEPTH

    def open(self, level: int, text: str, anchor: Optional[str]) -> None:
        self._levels[level] = text
        self._anchors[level] = anchor
        for deeper in range(level + 1, HIERARCHY_DEPTH):
            self._levels[deeper] = None
            self._anchors[deeper] = None

    def snapshot(self) -> Dict[str, Optional[str]]:
        return {f"lvl{level}": text for level, text in enumerate(self._levels)}

    def depth(self) -> int:
        """Index of the deepest open level, ``-1`` when none is open."""
        for level in range(HIERARCHY_DEPTH - 1, -1, -1):
            if self._levels[level] is not None:
                return level
        return -1

    def anchor(self) -> Optional[str]:
        """Identifier of the innermost open heading that has one."""
        for level in range(self.depth(), -1, -1):
            if self._anchors[level]:
                return self._anchors[level]
        return None

    def heading_weight(self) -> int:
        return HEADING_WEIGHT_MAX - (self.depth() + 1) * HEADING_WEIGHT_STEP


def _heading_anchor(node: Tag) -> Optional[str]:
    anchor = node.get("id")
    if anchor:
        return anchor
    inner = node.find(attrs={"id": True})
    if inner is not None:
        return inner.get("id")
    return None


class HierarchyExtractor:
    """
    Extract records from one HTML document.

    An extractor is single-use: ``extract()`` returns a one-shot iterator.
    Create a new extractor to extract again.
    """

    def __init__(self, html: str, css_selector: str = "p") -> None:
        self._soup = BeautifulSoup(html or "", "html.parser")
        self._css_selector = css_selector or "p"

    def extract(self) -> Iterator[Tuple[Dict[str, Any], Tag]]:
        """
        Yield ``(record, node)`` pairs in document order.

        The node is yielded alongside so per-record hooks can inspect it; it
        is not part of the record.
        """
        matching = {id(node) for node in self._soup.select(self._css_selector)}
        stack = HierarchyStack()
        position = 0

        for node in self._soup.find_all(True):
            if node.name in HEADING_TAGS:
                level = HEADING_TAGS.index(node.name)
                stack.open(level, normalize_whitespace(node.get_text()), _heading_anchor(node))

            if id(node) not in matching:
                continue

            record = {
                "html": str(node),
                "text": normalize_whitespace(node.get_text()),
                "tag_name": node.name,
                "anchor": stack.anchor(),
                "hierarchy": stack.snapshot(),
                "weight": {
                    "heading": stack.heading_weight(),
                    "position": position,
                },
            }
            position += 1
            yield record, node


def extract(html: str, css_selector: str = "p") -> List[Dict[str, Any]]:
    """Return the records of a document, without their nodes."""
    return [record for record, _ in HierarchyExtractor(html, css_selector).extract()]
