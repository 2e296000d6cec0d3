"""
Record Shrinking

Records must fit the per-record quota of the search service. Excerpts are
the only fields we are allowed to degrade; every other field is content the
user asked us to index.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..core.errors import RecordStillTooBigError, UnshrinkableRecordError
from ..utils import json_size

logger = logging.getLogger("sitesearch.shrinker")


def size(record: Dict[str, Any]) -> int:
    """Byte size of the record once serialized to JSON."""
    return json_size(record)


def fit_to_size(raw_record: Dict[str, Any], max_size: int) -> Dict[str, Any]:
    """
    Reduce a record until it fits in ``max_size`` bytes.

    Stages, stopping at the first one that fits:

    1. the record as-is
    2. the HTML excerpt replaced by the text excerpt
    3. both excerpts halved, by word count
    4. both excerpts removed

    Parameters
    ----------
    raw_record : Dict[str, Any]
        Record to fit. It is never modified.

    max_size : int
        Maximum serialized size, in bytes.

    Returns
    -------
    Dict[str, Any]
        The original record if it already fits, a shrunk copy otherwise.

    Raises
    ------
    UnshrinkableRecordError
        If the record is too big and has no excerpt to degrade.

    RecordStillTooBigError
        If the record is still too big without any excerpt.
    """
    if size(raw_record) <= max_size:
        return raw_record

    if "excerpt_html" not in raw_record:
        raise UnshrinkableRecordError(raw_record, size(raw_record), max_size)

    record = dict(raw_record)
    excerpt_text = record.get("excerpt_text") or ""

    record["excerpt_html"] = excerpt_text
    if size(record) <= max_size:
        return record

    words = excerpt_text.split()
    halved = " ".join(words[: len(words) // 2])
    if "excerpt_text" in record:
        record["excerpt_text"] = halved
    record["excerpt_html"] = halved
    if size(record) <= max_size:
        return record

    record.pop("excerpt_text", None)
    record.pop("excerpt_html", None)
    final_size = size(record)
    if final_size <= max_size:
        logger.debug("Removed excerpts from %s to fit %d bytes", record.get("url"), max_size)
        return record

    raise RecordStillTooBigError(record, final_size, max_size)
