"""
Shared Helpers

Small, dependency-light helpers used across extraction, shrinking and
reconciliation. Everything here is pure: no logging, no I/O.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup


_OPAQUE_REPR = re.compile(r"<[^ ].* (object )?at 0x[0-9a-fA-F]+>")
_WHITESPACE = re.compile(r"\s+")


def canonical_json(value: Any) -> str:
    """
    Serialize a value to its canonical JSON form.

    Keys are sorted and separators carry no padding so that two equal
    mappings always produce byte-identical output.
    """
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def json_size(value: Any) -> int:
    """Byte length of the canonical UTF-8 JSON encoding of ``value``."""
    return len(canonical_json(value).encode("utf-8"))


def html_to_text(html: Optional[str]) -> Optional[str]:
    """
    Convert an HTML fragment to its text content.

    Newlines and runs of whitespace collapse to a single space.
    """
    if html is None:
        return None
    text = BeautifulSoup(html, "html.parser").get_text()
    return normalize_whitespace(text)


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def compact_empty(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove every key whose value is ``None`` or an empty collection/string.

    ``False`` and ``0`` are meaningful values and are kept.
    """
    compacted: Dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, (str, list, tuple, dict, set)) and len(value) == 0:
            continue
        compacted[key] = value
    return compacted


def jsonify(item: Any) -> Any:
    """
    Convert an arbitrary front-matter value into something JSON can store.

    Scalars, lists and mappings are kept (recursively). Dates become ISO
    strings. Anything else is stringified, unless its string form is an
    opaque object representation, in which case it is discarded.
    """
    if item is None or isinstance(item, (bool, int, float, str)):
        return item
    if isinstance(item, (list, tuple, set)):
        return [jsonify(value) for value in item]
    if isinstance(item, dict):
        return {str(key): jsonify(value) for key, value in item.items()}
    if isinstance(item, (datetime, date)):
        return item.isoformat()

    stringified = str(item)
    if _OPAQUE_REPR.search(stringified):
        return None
    return stringified


def find_by_key(
    items: Optional[Iterable[Dict[str, Any]]],
    key: str,
    value: Any,
) -> Optional[Dict[str, Any]]:
    if items is None:
        return None
    for item in items:
        if item.get(key) == value:
            return item
    return None


def diff_keys(
    local: Dict[str, Any],
    remote: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    """
    Return the keys of ``local`` whose remote value differs.

    Only keys present locally are compared, so settings the remote side
    holds but that are not managed locally never count as a difference.
    The returned mapping holds the *remote* values. ``None`` means no
    difference.
    """
    remote = remote or {}
    changed = {
        key: remote.get(key)
        for key, value in local.items()
        if remote.get(key) != value
    }
    return changed or None


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    if size < 1:
        raise ValueError("Chunk size must be a positive integer.")
    return [items[start : start + size] for start in range(0, len(items), size)]
