"""
Record Pipeline

documents → extraction → metadata merge → hooks → objectID → shrinking

Records of one document keep their extraction order; documents are
processed in the order given.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Optional

from .extractor import HierarchyExtractor
from .fingerprint import assign_object_id
from .hooks import Hooks
from .shrinker import fit_to_size
from ..config import Settings
from ..documents.browser import FileBrowser
from ..documents.models import Document
from ..utils import compact_empty

logger = logging.getLogger("sitesearch.pipeline")

Record = Dict[str, Any]


def extract_document(
    document: Document,
    browser: FileBrowser,
    config: Settings,
    hooks: Hooks,
) -> List[Record]:
    """
    Extract the records of one document, with its shared metadata merged
    in and the per-record hook applied.
    """
    shared = browser.metadata(document)
    extractor = HierarchyExtractor(document.content, config.nodes_to_index)

    records: List[Record] = []
    for raw, node in extractor.extract():
        record = compact_empty({**raw, **shared})
        record = hooks.apply_each(record, node)
        # Hooks return None to drop a record
        if record is None:
            continue
        records.append(record)
    return records


def build_records(
    documents: Iterable[Document],
    config: Settings,
    hooks: Optional[Hooks] = None,
    start_time: Optional[dt.datetime] = None,
) -> List[Record]:
    """
    Turn documents into final, identified, size-bounded records.

    Raises
    ------
    UnshrinkableRecordError, RecordStillTooBigError
        If a record cannot fit ``config.max_record_size``.
    """
    hooks = hooks or Hooks()
    browser = FileBrowser(config, hooks, start_time=start_time)

    records: List[Record] = []
    file_count = 0
    for document in documents:
        if not browser.is_indexable(document):
            logger.debug("Skipping %s", document.path)
            continue
        logger.debug("Extracting records from %s", document.path)
        records.extend(extract_document(document, browser, config, hooks))
        file_count += 1

    logger.debug("Found %d files", file_count)

    records = hooks.apply_all(records)
    records = [assign_object_id(record) for record in records]
    return [fit_to_size(record, config.max_record_size) for record in records]
